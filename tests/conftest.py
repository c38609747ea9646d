import json
import os

# Keep the app's own engine in memory; tests use their own engine below
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from newsly.database import Base, get_db
from newsly.dependencies import get_ai_client, get_email_client, get_optional_email_client
from newsly.models.subscriber import Subscriber, TIER_FREE, TIER_TOPICS, TOPIC_COLUMNS


class FakeEmailClient:
    """Records sends; addresses in `fail_for` raise like a provider error would."""

    def __init__(self, fail_for=None):
        self.fail_for = set(fail_for or [])
        self.sent = []

    def send(self, to, subject, html_content):
        if to in self.fail_for:
            raise RuntimeError(f"Provider rejected {to}")
        self.sent.append({"to": to, "subject": subject, "html": html_content})
        return f"email-{len(self.sent)}"

    @property
    def recipients(self):
        return [message["to"] for message in self.sent]


class FakeAIClient:
    """Answers prompts from a queue; an Exception in the queue is raised instead."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.prompts = []

    async def complete(self, prompt):
        self.prompts.append(prompt)
        response = self.responses.pop(0) if self.responses else ai_payload()
        if isinstance(response, Exception):
            raise response
        return response


def ai_payload(subject="Today in AI", **overrides):
    payload = {
        "subject": subject,
        "previewText": "Three tools worth a look",
        "headline": "The week's best launches",
        "intro": "A quick tour of what shipped.",
        "sections": [
            {"title": "Tool one", "content": "Does **things**.", "link": "https://example.com/one"},
            {"title": "Tool two", "content": "Does more things."},
        ],
        "cta": "Explore more",
    }
    payload.update(overrides)
    return json.dumps(payload)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def email_client():
    return FakeEmailClient()


@pytest.fixture
def ai_client():
    return FakeAIClient()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "CRON_SECRET",
        "ADMIN_API_KEY",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "STRIPE_PRO_MONTHLY_PRICE_ID",
        "STRIPE_PREMIUM_MONTHLY_PRICE_ID",
        "NEWSLETTER_BATCH_SIZE",
        "OPENAI_API_KEY",
        "FINLIGHT_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("APP_URL", "https://newsly.test")
    monkeypatch.setenv("USE_MOCK_PAYMENT", "true")


@pytest.fixture
def client(db, email_client, ai_client):
    from newsly.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_email_client] = lambda: email_client
    app.dependency_overrides[get_optional_email_client] = lambda: email_client
    app.dependency_overrides[get_ai_client] = lambda: ai_client
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_subscriber(db):
    counter = {"n": 0}

    def _make(email=None, tier=TIER_FREE, topics=None, **fields):
        counter["n"] += 1
        subscriber = Subscriber(
            email=email or f"reader{counter['n']}@example.com",
            name=fields.pop("name", f"Reader {counter['n']}"),
            tier=tier,
            **fields,
        )
        # Default to every topic the tier allows
        for topic, column in TOPIC_COLUMNS.items():
            wanted = topics if topics is not None else TIER_TOPICS[tier]
            setattr(subscriber, column, topic in wanted)
        db.add(subscriber)
        db.commit()
        db.refresh(subscriber)
        return subscriber

    return _make
