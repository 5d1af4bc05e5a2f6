import pytest

from newsletter_dispatch.newsletter_db import NewsletterDb
from newsletter_dispatch.transport import Delivered, Rejected


class DummyTransport:
    """Records every send; addresses in ``fail`` are rejected with a 550."""

    def __init__(self, fail=(), error="550 mailbox unavailable", smtp_code=550):
        self.fail = set(fail)
        self.error = error
        self.smtp_code = smtp_code
        self.sent = []
        self.closed = False

    async def send(self, to, subject, html, text):
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
        if to in self.fail:
            return Rejected(error=self.error, temporary=False, smtp_code=self.smtp_code)
        return Delivered(message_id=f"<{len(self.sent)}@test.local>")

    async def close(self):
        self.closed = True


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def reader(n):
    return f"reader{n:03d}@example.com"


@pytest.fixture
def make_db(tmp_path):
    async def _make(name="newsletter.db"):
        db = NewsletterDb(str(tmp_path / name))
        await db.init_db()
        return db

    return _make


@pytest.fixture
def seed():
    """Insert a campaign plus ``count`` active subscribers reader001..readerNNN, in that order."""

    async def _seed(db, campaign_id="nl-1", count=3, *, type="manual", status="draft",
                    content="<h1>Hello</h1><p>News &amp; updates</p>", preferences=None):
        await db.campaigns.add(
            {
                "id": campaign_id,
                "subject": "Weekly news",
                "content": content,
                "title": "Weekly news",
                "type": type,
                "status": status,
            }
        )
        for i in range(1, count + 1):
            await db.subscribers.add(
                {
                    "id": f"sub-{i:03d}",
                    "email": reader(i),
                    "unsubscribe_token": f"tok-{i:03d}",
                    "preferences": preferences,
                    "subscribed_at": f"2025-01-01T00:{i // 60:02d}:{i % 60:02d}.000Z",
                }
            )
        return [reader(i) for i in range(1, count + 1)]

    return _seed


@pytest.fixture
def transport_class():
    return DummyTransport


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def email():
    return reader
