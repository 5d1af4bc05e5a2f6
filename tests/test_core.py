import logging

import pytest

from newsletter_dispatch.config import DispatchConfig
from newsletter_dispatch.core import NewsletterCore
from newsletter_dispatch.exceptions import (
    CampaignNotFoundError,
    InvalidRequestError,
    InvalidTransitionError,
    TransportConfigurationError,
)


def make_core(tmp_path, transport=None, sleep=None, **config):
    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep
    return NewsletterCore(
        db_path=str(tmp_path / "core.db"),
        config=DispatchConfig(**config),
        transport=transport,
        site_url="https://news.example.edu",
        **kwargs,
    )


@pytest.mark.asyncio
async def test_batch_send_then_resume(tmp_path, seed, transport_class, recording_sleep, email):
    transport = transport_class(fail={email(2)})
    core = make_core(tmp_path, transport, recording_sleep, batch_size=2)
    await core.init()
    await seed(core.db, count=5)

    summary = await core.batch_send("nl-1", "all")
    assert summary == {"successful": 4, "failed": 1, "total": 5, "batches": 3}

    transport.fail.clear()
    summary = await core.batch_send("nl-1", "failed")
    assert summary == {"successful": 1, "failed": 0, "total": 1, "batches": 1}

    progress = await core.get_progress("nl-1")
    assert progress["status"] == "sent"
    assert progress["successful_sends"] == 5
    assert progress["failed_sends"] == 1
    assert progress["recipient_count"] == 6
    await core.close()
    assert transport.closed is True


@pytest.mark.asyncio
async def test_nothing_to_send_returns_zeros(tmp_path, seed, transport_class, recording_sleep):
    core = make_core(tmp_path, transport_class(), recording_sleep)
    await core.init()
    await seed(core.db, count=2)
    await core.batch_send("nl-1", "all")

    for mode in ("failed", "unsent", "all"):
        summary = await core.batch_send("nl-1", mode)
        assert summary == {"successful": 0, "failed": 0, "total": 0, "batches": 0}
    assert (await core.get_progress("nl-1"))["status"] == "sent"


@pytest.mark.asyncio
async def test_sent_campaign_with_new_subscribers_is_refused(tmp_path, seed, transport_class, recording_sleep):
    core = make_core(tmp_path, transport_class(), recording_sleep)
    await core.init()
    await seed(core.db, count=1)
    await core.batch_send("nl-1")
    await core.db.subscribers.add({"email": "late@example.com"})

    with pytest.raises(InvalidTransitionError):
        await core.batch_send("nl-1", "unsent")


@pytest.mark.asyncio
async def test_batch_send_validation(tmp_path, seed, transport_class, recording_sleep):
    core = make_core(tmp_path, transport_class(), recording_sleep)
    await core.init()
    await seed(core.db, count=1)

    with pytest.raises(InvalidRequestError):
        await core.batch_send("", "all")
    with pytest.raises(InvalidRequestError):
        await core.batch_send("nl-1", "sometimes")
    with pytest.raises(CampaignNotFoundError):
        await core.batch_send("missing", "all")
    assert (await core.get_progress("nl-1"))["status"] == "draft"


@pytest.mark.asyncio
async def test_batch_send_without_transport(tmp_path, seed):
    core = make_core(tmp_path)
    await core.init()
    await seed(core.db, count=1)

    assert core.dispatcher is None
    with pytest.raises(TransportConfigurationError):
        await core.batch_send("nl-1", "all")
    assert (await core.get_progress("nl-1"))["status"] == "draft"


@pytest.mark.asyncio
async def test_quota_warning_is_logged(tmp_path, seed, transport_class, recording_sleep, caplog):
    core = make_core(tmp_path, transport_class(), recording_sleep, daily_limit=1)
    await core.init()
    await seed(core.db, count=2)

    with caplog.at_level(logging.WARNING, logger="newsletter_dispatch"):
        summary = await core.batch_send("nl-1", "all")

    assert summary["successful"] == 2
    assert "exceed the remaining daily quota" in caplog.text


@pytest.mark.asyncio
async def test_estimate(tmp_path, seed, transport_class, recording_sleep):
    core = make_core(tmp_path, transport_class(), recording_sleep, batch_size=25, batch_delay_ms=3000)
    await core.init()
    await seed(core.db, count=60)

    estimate = await core.estimate("nl-1", "unsent")

    assert estimate["recipients"] == 60
    assert estimate["batches"] == 3
    assert estimate["estimated_time_ms"] == 2 * 3000 + 60 * 500
    assert estimate["estimated_time_minutes"] == 1
    assert estimate["quota"]["would_exceed"] is False
    assert estimate["provider"] == "office365"


@pytest.mark.asyncio
async def test_handle_command(tmp_path, seed, transport_class, recording_sleep):
    core = make_core(tmp_path, transport_class(), recording_sleep)
    await core.init()
    await seed(core.db, count=3)

    result = await core.handle_command("batchSend", {"campaign_id": "nl-1", "resume_type": "all"})
    assert result == {"ok": True, "successful": 3, "failed": 0, "total": 3, "batches": 1}

    progress = await core.handle_command("getProgress", {"campaign_id": "nl-1"})
    assert progress["ok"] is True
    assert progress["status"] == "sent"

    status = await core.handle_command("deliveryStatus", {"campaign_id": "nl-1"})
    assert status["summary"]["sent"] == 3

    exported = await core.handle_command("exportCsv", {"campaign_id": "nl-1"})
    assert exported["csv"] == "email,status,attempts,error\n"

    estimate = await core.handle_command("estimate", {"campaign_id": "nl-1", "resume_type": "all"})
    assert estimate["recipients"] == 0


@pytest.mark.asyncio
async def test_handle_command_errors(tmp_path, seed, transport_class, recording_sleep):
    core = make_core(tmp_path, transport_class(), recording_sleep)
    await core.init()
    await seed(core.db, count=1)

    missing = await core.handle_command("getProgress", {"campaign_id": "nope"})
    assert missing == {"ok": False, "error": "Campaign 'nope' not found", "code": "not_found"}

    no_id = await core.handle_command("batchSend", {})
    assert no_id["code"] == "invalid_request"

    bad_mode = await core.handle_command("batchSend", {"campaign_id": "nl-1", "resume_type": "x"})
    assert bad_mode["code"] == "invalid_request"

    unknown = await core.handle_command("reboot")
    assert unknown == {"ok": False, "error": "unknown command", "code": "unknown_command"}
