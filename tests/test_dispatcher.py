from contextlib import asynccontextmanager

import pytest

from newsletter_dispatch.config import DispatchConfig
from newsletter_dispatch.dispatcher import BatchDispatcher, RunResult, partition
from newsletter_dispatch.exceptions import CampaignLockedError, DispatchError, LockLostError
from newsletter_dispatch.prometheus import DispatchMetrics
from newsletter_dispatch.resolver import Recipient, RecipientResolver
from newsletter_dispatch.state import CampaignStateMachine
from newsletter_dispatch.transport import Delivered, SmtpTransport


@pytest.mark.parametrize(
    "count,size,expected",
    [
        (0, 25, []),
        (10, 25, [10]),
        (25, 25, [25]),
        (60, 25, [25, 25, 10]),
        (75, 25, [25, 25, 25]),
    ],
)
def test_partition_sizes(count, size, expected):
    items = list(range(count))
    batches = partition(items, size)
    assert [len(b) for b in batches] == expected
    assert [x for b in batches for x in b] == items


def test_partition_rejects_zero_size():
    with pytest.raises(ValueError):
        partition([1], 0)


def make_dispatcher(db, transport, sleep, **config):
    cfg = DispatchConfig(**{"batch_size": 25, "batch_delay_ms": 3000, "inter_item_delay_ms": 200, **config})
    return BatchDispatcher(db, transport, cfg, metrics=DispatchMetrics(), sleep=sleep,
                           site_url="https://news.example.edu", site_name="Campus News")


@pytest.mark.asyncio
async def test_run_paces_batches_and_items(make_db, seed, transport_class, recording_sleep):
    db = await make_db()
    await seed(db, count=60)
    transport = transport_class()
    recipients = await RecipientResolver(db).resolve("nl-1", "all")

    result = await make_dispatcher(db, transport, recording_sleep).dispatch("nl-1", recipients)

    assert result == RunResult(successful=60, failed=0, total=60, batches=3, status="sent")
    assert recording_sleep.calls.count(3.0) == 2
    assert recording_sleep.calls.count(0.2) == 24 + 24 + 9
    assert len(recording_sleep.calls) == 2 + 57
    assert recording_sleep.calls[-1] == 0.2
    assert [m["to"] for m in transport.sent] == [r.email for r in recipients]


@pytest.mark.asyncio
async def test_messages_are_personalized(make_db, seed, transport_class, recording_sleep, email):
    db = await make_db()
    await seed(db, count=1)
    transport = transport_class()
    recipients = await RecipientResolver(db).resolve("nl-1")

    await make_dispatcher(db, transport, recording_sleep).dispatch("nl-1", recipients)

    message = transport.sent[0]
    assert message["to"] == email(1)
    assert message["subject"] == "Weekly news"
    assert "token=tok-001" in message["html"]
    assert "newsletter=nl-1" in message["html"]
    assert "Campus News" in message["html"]
    assert message["text"] == "Hello News & updates"
    assert recording_sleep.calls == []


@pytest.mark.asyncio
async def test_failures_and_resume_reach_everyone(make_db, seed, transport_class, recording_sleep, email):
    db = await make_db()
    await seed(db, count=60)
    resolver = RecipientResolver(db)

    first = make_dispatcher(db, transport_class(fail={email(10), email(40)}), recording_sleep)
    result = await first.dispatch("nl-1", await resolver.resolve("nl-1", "all"))

    assert (result.successful, result.failed, result.batches) == (58, 2, 3)
    assert result.status == "partially_sent"
    campaign = await db.campaigns.get("nl-1")
    assert campaign["status"] == "partially_sent"
    assert (campaign["successful_sends"], campaign["failed_sends"]) == (58, 2)
    assert campaign["recipient_count"] == 60
    failed_row = await db.deliveries.get("nl-1", email(10))
    assert failed_row["status"] == "failed"
    assert failed_row["error"] == "550 mailbox unavailable (SMTP 550)"

    retry_targets = await resolver.resolve("nl-1", "failed")
    assert [r.email for r in retry_targets] == [email(10), email(40)]

    retry_transport = transport_class()
    second = await make_dispatcher(db, retry_transport, recording_sleep).dispatch("nl-1", retry_targets)

    assert second.summary() == {"successful": 2, "failed": 0, "total": 2, "batches": 1}
    assert [m["to"] for m in retry_transport.sent] == [email(10), email(40)]
    assert await db.deliveries.stats("nl-1") == {"pending": 0, "sent": 60, "failed": 0, "total": 60}
    campaign = await db.campaigns.get("nl-1")
    assert campaign["status"] == "sent"
    assert campaign["sent_date"] is not None
    assert (await db.deliveries.get("nl-1", email(10)))["attempts"] == 2


@pytest.mark.asyncio
async def test_all_rejected_marks_campaign_failed(make_db, seed, transport_class, recording_sleep):
    db = await make_db()
    emails = await seed(db, count=3)

    result = await make_dispatcher(db, transport_class(fail=set(emails)), recording_sleep).dispatch(
        "nl-1", await RecipientResolver(db).resolve("nl-1")
    )

    assert result.status == "failed"
    campaign = await db.campaigns.get("nl-1")
    assert campaign["status"] == "failed"
    assert campaign["failed_sends"] == 3
    assert campaign["sent_date"] is None


@pytest.mark.asyncio
async def test_empty_recipient_list_leaves_campaign_untouched(make_db, seed, transport_class, recording_sleep):
    db = await make_db()
    await seed(db, count=0)
    before = await db.campaigns.get("nl-1")

    result = await make_dispatcher(db, transport_class(), recording_sleep).dispatch("nl-1", [])

    assert result.summary() == {"successful": 0, "failed": 0, "total": 0, "batches": 0}
    assert await db.campaigns.get("nl-1") == before


class ExplodingTransport:
    def __init__(self, explode_on):
        self.explode_on = explode_on
        self.sent = []

    async def send(self, to, subject, html, text):
        if to == self.explode_on:
            raise RuntimeError("provider client crashed")
        self.sent.append(to)
        return Delivered()


@pytest.mark.asyncio
async def test_unexpected_error_aborts_run(make_db, seed, recording_sleep, email):
    db = await make_db()
    await seed(db, count=30)
    transport = ExplodingTransport(explode_on=email(27))
    metrics = DispatchMetrics()
    dispatcher = make_dispatcher(db, transport, recording_sleep)
    dispatcher.metrics = metrics

    with pytest.raises(DispatchError) as exc_info:
        await dispatcher.dispatch("nl-1", await RecipientResolver(db).resolve("nl-1"))

    assert exc_info.value.code == "dispatch_failed"
    campaign = await db.campaigns.get("nl-1")
    assert campaign["status"] == "failed"
    assert campaign["errors"] == ["Batch send failed: provider client crashed"]
    assert campaign["locked_until"] is None
    # first batch completed before the crash
    assert campaign["successful_sends"] == 25
    assert (await db.deliveries.get("nl-1", email(27)))["status"] == "pending"
    assert b'nld_runs_total{campaign_id="nl-1",status="failed"} 1.0' in metrics.generate_latest()
    assert b"nld_active_runs 0.0" in metrics.generate_latest()


@pytest.mark.asyncio
async def test_aborted_run_can_be_resumed(make_db, seed, transport_class, recording_sleep, email):
    db = await make_db()
    await seed(db, count=30)
    resolver = RecipientResolver(db)
    with pytest.raises(DispatchError):
        await make_dispatcher(db, ExplodingTransport(explode_on=email(27)), recording_sleep).dispatch(
            "nl-1", await resolver.resolve("nl-1")
        )

    failed = [r.email for r in await resolver.resolve("nl-1", "failed")]
    unsent = [r.email for r in await resolver.resolve("nl-1", "unsent")]
    assert failed == [email(i) for i in range(27, 31)]
    assert unsent == []

    result = await make_dispatcher(db, transport_class(), recording_sleep).dispatch(
        "nl-1", await resolver.resolve("nl-1", "all")
    )
    assert result.successful == 4
    assert (await db.campaigns.get("nl-1"))["status"] == "sent"


class RecordingSMTP:
    def __init__(self):
        self.messages = []

    async def send_message(self, msg):
        self.messages.append(msg)


class SinglePool:
    def __init__(self, smtp):
        self.smtp = smtp

    @asynccontextmanager
    async def connection(self, host, port, user, password, *, use_tls):
        yield self.smtp

    async def close_all(self):
        pass


@pytest.mark.asyncio
async def test_malformed_address_fails_only_that_recipient(make_db, seed, recording_sleep):
    db = await make_db()
    await seed(db, count=3)
    smtp = RecordingSMTP()
    transport = SmtpTransport(host="smtp.example.com", from_address="news@example.com", pool=SinglePool(smtp))
    bad = "bad@example.com\r\nBcc: spy@example.com"
    good = await RecipientResolver(db).resolve("nl-1")
    recipients = [good[0], Recipient(email=bad, unsubscribe_token="tok-bad"), *good[1:]]

    result = await make_dispatcher(db, transport, recording_sleep).dispatch("nl-1", recipients)

    assert result == RunResult(successful=3, failed=1, total=4, batches=1, status="partially_sent")
    assert [m["To"] for m in smtp.messages] == [r.email for r in good]
    record = await db.deliveries.get("nl-1", bad)
    assert record["status"] == "failed"
    assert record["attempts"] == 1
    assert (await db.campaigns.get("nl-1"))["errors"] == []


class FakeClock:
    def __init__(self, now=1_700_000_000):
        self.now = now

    def __call__(self):
        return self.now


class SlowTransport:
    """Each send moves the clock forward by ``step`` seconds, then calls ``on_send``."""

    def __init__(self, clock, step, on_send):
        self.clock = clock
        self.step = step
        self.on_send = on_send

    async def send(self, to, subject, html, text):
        self.clock.now += self.step
        await self.on_send(to)
        return Delivered(message_id=f"<{to}>")


def clocked_dispatcher(db, transport, clock, metrics, sleep):
    state = CampaignStateMachine(db, lock_ttl_seconds=600, clock=clock)
    config = DispatchConfig(batch_size=25, batch_delay_ms=0, inter_item_delay_ms=0)
    return BatchDispatcher(db, transport, config, state=state, metrics=metrics, sleep=sleep)


@pytest.mark.asyncio
async def test_lock_is_refreshed_before_every_send(make_db, seed, recording_sleep):
    db = await make_db()
    await seed(db, count=3)
    clock = FakeClock()
    rival = CampaignStateMachine(db, lock_ttl_seconds=600, clock=clock)
    refused = []

    async def start_rival(to):
        with pytest.raises(CampaignLockedError):
            await rival.start_run("nl-1", 3)
        refused.append(to)

    dispatcher = clocked_dispatcher(db, SlowTransport(clock, 300, start_rival), clock, DispatchMetrics(), recording_sleep)
    result = await dispatcher.dispatch("nl-1", await RecipientResolver(db).resolve("nl-1"))

    assert result.status == "sent"
    assert len(refused) == 3


@pytest.mark.asyncio
async def test_run_stops_when_lock_is_taken_over(make_db, seed, recording_sleep, email):
    db = await make_db()
    await seed(db, count=3)
    clock = FakeClock()
    rival = CampaignStateMachine(db, lock_ttl_seconds=600, clock=clock)
    taken = {}

    async def take_over(to):
        if not taken:
            taken.update(await rival.start_run("nl-1", 3))

    metrics = DispatchMetrics()
    dispatcher = clocked_dispatcher(db, SlowTransport(clock, 700, take_over), clock, metrics, recording_sleep)

    with pytest.raises(DispatchError) as exc_info:
        await dispatcher.dispatch("nl-1", await RecipientResolver(db).resolve("nl-1"))

    assert isinstance(exc_info.value.__cause__, LockLostError)
    campaign = await db.campaigns.get("nl-1")
    assert campaign["status"] == "sending"
    assert campaign["lock_owner"] == taken["lock_owner"]
    assert (campaign["successful_sends"], campaign["failed_sends"]) == (0, 0)
    assert campaign["errors"] == []
    assert (await db.deliveries.get("nl-1", email(3)))["status"] == "pending"
    output = metrics.generate_latest()
    assert b'nld_runs_total{campaign_id="nl-1",status="lock_lost"} 1.0' in output
    assert b"nld_active_runs 0.0" in output


class BrokenStoreState(CampaignStateMachine):
    async def fail_run(self, campaign_id, error, *, owner):
        raise RuntimeError("database is locked")


@pytest.mark.asyncio
async def test_abort_survives_failure_to_record_it(make_db, seed, recording_sleep, email):
    db = await make_db()
    await seed(db, count=3)
    metrics = DispatchMetrics()
    config = DispatchConfig(batch_size=25, batch_delay_ms=0, inter_item_delay_ms=0)
    dispatcher = BatchDispatcher(
        db, ExplodingTransport(explode_on=email(2)), config,
        state=BrokenStoreState(db), metrics=metrics, sleep=recording_sleep,
    )

    with pytest.raises(DispatchError) as exc_info:
        await dispatcher.dispatch("nl-1", await RecipientResolver(db).resolve("nl-1"))

    assert str(exc_info.value) == "Batch send failed: provider client crashed"
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert str(exc_info.value.__cause__) == "provider client crashed"
    output = metrics.generate_latest()
    assert b'nld_runs_total{campaign_id="nl-1",status="failed"} 1.0' in output
    assert b"nld_active_runs 0.0" in output
