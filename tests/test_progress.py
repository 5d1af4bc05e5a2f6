import pytest

from newsletter_dispatch.config import DispatchConfig
from newsletter_dispatch.dispatcher import BatchDispatcher
from newsletter_dispatch.exceptions import CampaignNotFoundError
from newsletter_dispatch.progress import ProgressReporter
from newsletter_dispatch.resolver import RecipientResolver


@pytest.mark.asyncio
async def test_progress_of_fresh_campaign(make_db, seed):
    db = await make_db()
    await seed(db, count=2)

    progress = await ProgressReporter(db).get_progress("nl-1")

    assert progress == {
        "status": "draft",
        "successful_sends": 0,
        "failed_sends": 0,
        "recipient_count": 0,
        "batch_info": None,
        "last_sent_at": None,
        "last_error": None,
    }


@pytest.mark.asyncio
async def test_progress_reads_do_not_mutate(make_db, seed):
    db = await make_db()
    await seed(db, count=2)
    reporter = ProgressReporter(db)
    before = await db.campaigns.get("nl-1")

    first = await reporter.get_progress("nl-1")
    second = await reporter.get_progress("nl-1")

    assert first == second
    assert await db.campaigns.get("nl-1") == before


@pytest.mark.asyncio
async def test_progress_unknown_campaign(make_db):
    db = await make_db()
    with pytest.raises(CampaignNotFoundError):
        await ProgressReporter(db).get_progress("missing")


@pytest.mark.asyncio
async def test_progress_reports_last_error(make_db, seed):
    db = await make_db()
    await seed(db, count=0)
    await db.campaigns.fail_run("nl-1", "Batch send failed: one")
    await db.campaigns.fail_run("nl-1", "Batch send failed: two")

    progress = await ProgressReporter(db).get_progress("nl-1")
    assert progress["status"] == "failed"
    assert progress["last_error"] == "Batch send failed: two"


async def _run_with_failures(db, transport_class, recording_sleep, fail):
    dispatcher = BatchDispatcher(
        db, transport_class(fail=fail), DispatchConfig(batch_size=2), sleep=recording_sleep
    )
    recipients = await RecipientResolver(db).resolve("nl-1", "all")
    return await dispatcher.dispatch("nl-1", recipients[:3])


@pytest.mark.asyncio
async def test_progress_after_run(make_db, seed, transport_class, recording_sleep, email):
    db = await make_db()
    await seed(db, count=4)
    await _run_with_failures(db, transport_class, recording_sleep, {email(2)})

    progress = await ProgressReporter(db).get_progress("nl-1")

    assert progress["status"] == "partially_sent"
    assert progress["successful_sends"] == 2
    assert progress["failed_sends"] == 1
    assert progress["recipient_count"] == 3
    assert progress["batch_info"]["total_batches"] == 2
    assert progress["batch_info"]["batch_size"] == 2
    assert progress["last_sent_at"] is None
    assert 0 <= (progress["successful_sends"] + progress["failed_sends"]) / progress["recipient_count"] <= 1


@pytest.mark.asyncio
async def test_delivery_status_breakdown(make_db, seed, transport_class, recording_sleep, email):
    db = await make_db()
    await seed(db, count=4)
    await _run_with_failures(db, transport_class, recording_sleep, {email(2)})

    report = await ProgressReporter(db).delivery_status("nl-1")

    assert report["campaign_id"] == "nl-1"
    assert report["summary"] == {"total": 4, "sent": 2, "failed": 1, "pending": 0, "not_attempted": 1}
    assert [f["email"] for f in report["failed_emails"]] == [email(2)]
    assert report["failed_emails"][0]["attempts"] == 1
    assert report["failed_emails"][0]["error"] == "550 mailbox unavailable (SMTP 550)"
    assert report["not_attempted_emails"] == [email(4)]
    assert len(report["recent"]) == 3


@pytest.mark.asyncio
async def test_export_csv_lists_failed_then_not_attempted(make_db, seed, transport_class, recording_sleep, email):
    db = await make_db()
    await seed(db, count=4)
    await _run_with_failures(db, transport_class, recording_sleep, {email(2)})

    csv_text = await ProgressReporter(db).export_csv("nl-1")

    assert csv_text.splitlines() == [
        "email,status,attempts,error",
        f"{email(2)},failed,1,550 mailbox unavailable (SMTP 550)",
        f"{email(4)},not_attempted,0,",
    ]


class SnapshotSleep:
    """Reads campaign progress whenever the dispatcher pauses between batches."""

    def __init__(self, reporter, batch_pause):
        self.reporter = reporter
        self.batch_pause = batch_pause
        self.snapshots = []

    async def __call__(self, seconds):
        if seconds == self.batch_pause:
            self.snapshots.append(await self.reporter.get_progress("nl-1"))


@pytest.mark.asyncio
async def test_progress_grows_batch_by_batch(make_db, seed, transport_class, email):
    db = await make_db()
    await seed(db, count=60)
    sleep = SnapshotSleep(ProgressReporter(db), batch_pause=3.0)
    dispatcher = BatchDispatcher(
        db, transport_class(fail={email(5), email(40)}), DispatchConfig(), sleep=sleep
    )

    await dispatcher.dispatch("nl-1", await RecipientResolver(db).resolve("nl-1", "all"))
    final = await ProgressReporter(db).get_progress("nl-1")

    done = [s["successful_sends"] + s["failed_sends"] for s in [*sleep.snapshots, final]]
    assert done == [25, 50, 60]
    assert [s["status"] for s in sleep.snapshots] == ["sending", "sending"]
    assert [s["failed_sends"] for s in [*sleep.snapshots, final]] == [1, 2, 2]
    assert all(s["recipient_count"] == 60 for s in sleep.snapshots)
    assert final["status"] == "partially_sent"
