"""Tests for the newsletter dispatch loop and the newsletter lifecycle."""
import asyncio
import threading
import time

import pytest

from conftest import FakeAIClient, FakeEmailClient, ai_payload
from newsly.models.email_log import EmailLog, EMAIL_STATUS_FAILED, EMAIL_STATUS_SENT
from newsly.models.newsletter import (
    InvalidStatusTransition,
    Newsletter,
    NEWSLETTER_STATUS_DRAFT,
    NEWSLETTER_STATUS_FAILED,
    NEWSLETTER_STATUS_SENDING,
    NEWSLETTER_STATUS_SENT,
)
from newsly.models.subscriber import TIER_FREE, TIER_PRO, TIER_PREMIUM, TOPIC_AI_TOOLS, TOPIC_CRYPTO
from newsly.services import dispatch_service
from newsly.services.content_service import NewsletterContentGenerator
from newsly.services.dispatch_service import (
    dispatch_newsletter,
    resume_dispatch,
    run_scheduled_dispatch,
    run_tier_dispatch,
    send_admin_newsletter,
    send_draft,
)


def _newsletter(db, status=NEWSLETTER_STATUS_SENDING, **fields):
    newsletter = Newsletter(
        subject=fields.pop("subject", "Hello"),
        content_html=fields.pop("content_html", "<p>{{personalization}}Hi {{name}}</p>"),
        status=status,
        **fields,
    )
    db.add(newsletter)
    db.commit()
    db.refresh(newsletter)
    return newsletter


def _generator(responses=None):
    return NewsletterContentGenerator(FakeAIClient(responses), app_url="https://newsly.test")


def _logs(db, newsletter_id):
    return db.query(EmailLog).filter(EmailLog.newsletter_id == newsletter_id).order_by(EmailLog.subscriber_id).all()


def test_all_sends_succeed(db, make_subscriber, email_client):
    subscribers = [make_subscriber() for _ in range(3)]
    newsletter = _newsletter(db)

    result = asyncio.run(dispatch_newsletter(db, email_client, newsletter, subscribers))

    assert (result.sent, result.failed, result.skipped) == (3, 0, 0)
    assert newsletter.status == NEWSLETTER_STATUS_SENT
    assert newsletter.sent_at is not None
    assert newsletter.recipient_count == 3
    assert [log.status for log in _logs(db, newsletter.id)] == [EMAIL_STATUS_SENT] * 3
    for subscriber in subscribers:
        db.refresh(subscriber)
        assert subscriber.last_email_sent is not None


def test_partial_failure_still_ends_sent(db, make_subscriber):
    subscribers = [make_subscriber() for _ in range(3)]
    email_client = FakeEmailClient(fail_for=[subscribers[1].email])
    newsletter = _newsletter(db)

    result = asyncio.run(dispatch_newsletter(db, email_client, newsletter, subscribers))

    assert (result.sent, result.failed) == (2, 1)
    assert newsletter.status == NEWSLETTER_STATUS_SENT
    assert newsletter.recipient_count == result.sent + result.failed

    logs = _logs(db, newsletter.id)
    assert [log.status for log in logs] == [EMAIL_STATUS_SENT, EMAIL_STATUS_FAILED, EMAIL_STATUS_SENT]
    assert "rejected" in logs[1].error_message
    db.refresh(subscribers[1])
    assert subscribers[1].last_email_sent is None


def test_every_send_failing_still_ends_sent(db, make_subscriber):
    subscribers = [make_subscriber() for _ in range(2)]
    email_client = FakeEmailClient(fail_for=[s.email for s in subscribers])
    newsletter = _newsletter(db)

    result = asyncio.run(dispatch_newsletter(db, email_client, newsletter, subscribers))

    assert (result.sent, result.failed) == (0, 2)
    assert newsletter.status == NEWSLETTER_STATUS_SENT
    assert newsletter.recipient_count == 2


def test_zero_subscribers_ends_sent_with_no_logs(db, email_client):
    newsletter = _newsletter(db)

    result = asyncio.run(dispatch_newsletter(db, email_client, newsletter, []))

    assert (result.sent, result.failed) == (0, 0)
    assert newsletter.status == NEWSLETTER_STATUS_SENT
    assert newsletter.recipient_count == 0
    assert _logs(db, newsletter.id) == []
    assert email_client.sent == []


def test_batches_cover_every_subscriber(db, make_subscriber, email_client):
    subscribers = [make_subscriber() for _ in range(7)]
    newsletter = _newsletter(db)

    result = asyncio.run(dispatch_newsletter(db, email_client, newsletter, subscribers, batch_size=3))

    assert result.sent == 7
    assert sorted(email_client.recipients) == sorted(s.email for s in subscribers)


class SlowEmailClient:
    """Thread-safe client that holds each send briefly and tracks sends in flight."""

    def __init__(self, delay=0.05):
        self.delay = delay
        self.lock = threading.Lock()
        self.in_flight = 0
        self.peak = 0
        self.events = []

    def send(self, to, subject, html_content):
        with self.lock:
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
            self.events.append(("start", to))
        time.sleep(self.delay)
        with self.lock:
            self.in_flight -= 1
            self.events.append(("end", to))
        return f"email-{to}"


def test_batch_sends_run_together_and_batches_run_in_order(db, make_subscriber):
    subscribers = [make_subscriber() for _ in range(12)]
    email_client = SlowEmailClient()
    newsletter = _newsletter(db)

    result = asyncio.run(dispatch_newsletter(db, email_client, newsletter, subscribers, batch_size=5))

    assert result.sent == 12
    assert email_client.peak == 5

    first_batch = {s.email for s in subscribers[:5]}
    later = {s.email for s in subscribers[5:]}
    positions = {event: i for i, event in enumerate(email_client.events)}
    last_first_batch_end = max(positions[("end", email)] for email in first_batch)
    first_later_start = min(positions[("start", email)] for email in later)
    assert last_first_batch_end < first_later_start


def test_each_email_is_personalized(db, make_subscriber, email_client):
    subscribers = [make_subscriber(name="Asha"), make_subscriber(name=" ")]
    newsletter = _newsletter(db)

    asyncio.run(dispatch_newsletter(db, email_client, newsletter, subscribers))

    bodies = {message["to"]: message["html"] for message in email_client.sent}
    assert "Hi Asha" in bodies[subscribers[0].email]
    assert "Hi there" in bodies[subscribers[1].email]
    assert "{{personalization}}" not in bodies[subscribers[0].email]


def test_dispatch_requires_sending_status(db, make_subscriber, email_client):
    newsletter = _newsletter(db, status=NEWSLETTER_STATUS_DRAFT)

    with pytest.raises(InvalidStatusTransition):
        asyncio.run(dispatch_newsletter(db, email_client, newsletter, [make_subscriber()]))

    assert email_client.sent == []


def test_loop_crash_marks_failed_and_reraises(db, make_subscriber, email_client, monkeypatch):
    subscribers = [make_subscriber() for _ in range(2)]
    newsletter = _newsletter(db)

    def broken_render(content_html, subscriber):
        raise RuntimeError("template exploded")

    monkeypatch.setattr(dispatch_service, "render_personalized_email", broken_render)

    with pytest.raises(RuntimeError):
        asyncio.run(dispatch_newsletter(db, email_client, newsletter, subscribers))

    db.refresh(newsletter)
    assert newsletter.status == NEWSLETTER_STATUS_FAILED


def test_two_runs_create_two_newsletters(db, make_subscriber, email_client):
    subscriber = make_subscriber()

    first = asyncio.run(run_tier_dispatch(db, email_client, _generator(), TOPIC_AI_TOOLS, TIER_FREE))
    second = asyncio.run(run_tier_dispatch(db, email_client, _generator(), TOPIC_AI_TOOLS, TIER_FREE))

    assert first.newsletterId != second.newsletterId
    assert db.query(EmailLog).filter(EmailLog.subscriber_id == subscriber.id).count() == 2
    assert email_client.recipients == [subscriber.email, subscriber.email]


def test_resume_skips_logged_subscribers(db, make_subscriber, email_client):
    done, pending = make_subscriber(), make_subscriber()
    newsletter = _newsletter(db, topic=TOPIC_AI_TOOLS, target_tier=TIER_FREE)
    db.add(EmailLog(
        subscriber_id=done.id,
        newsletter_id=newsletter.id,
        email_type="newsletter",
        subject=newsletter.subject,
        status=EMAIL_STATUS_SENT,
    ))
    db.commit()

    result = asyncio.run(resume_dispatch(db, email_client, newsletter))

    assert (result.sent, result.skipped) == (1, 1)
    assert email_client.recipients == [pending.email]
    assert newsletter.status == NEWSLETTER_STATUS_SENT
    assert newsletter.recipient_count == 2


def test_resume_after_failed_run(db, make_subscriber, email_client):
    make_subscriber()
    newsletter = _newsletter(db, status=NEWSLETTER_STATUS_FAILED, topic=TOPIC_AI_TOOLS, target_tier=TIER_FREE)

    result = asyncio.run(resume_dispatch(db, email_client, newsletter))

    assert result.sent == 1
    assert newsletter.status == NEWSLETTER_STATUS_SENT


def test_sent_newsletter_cannot_be_resent(db, email_client):
    newsletter = _newsletter(db, status=NEWSLETTER_STATUS_SENT)

    with pytest.raises(InvalidStatusTransition):
        asyncio.run(resume_dispatch(db, email_client, newsletter))
    with pytest.raises(InvalidStatusTransition):
        asyncio.run(send_draft(db, email_client, newsletter))


def test_send_draft_uses_stored_audience(db, make_subscriber, email_client):
    make_subscriber(topics=[TOPIC_AI_TOOLS])
    crypto_fan = make_subscriber(tier=TIER_PRO, topics=[TOPIC_CRYPTO])
    newsletter = _newsletter(
        db,
        status=NEWSLETTER_STATUS_DRAFT,
        audience_json='{"subscriberIds": [], "targetTopics": ["CRYPTO"]}',
    )

    result = asyncio.run(send_draft(db, email_client, newsletter))

    assert result.sent == 1
    assert email_client.recipients == [crypto_fan.email]
    assert newsletter.status == NEWSLETTER_STATUS_SENT


def test_tier_dispatch_stores_generated_issue(db, make_subscriber, email_client):
    make_subscriber(tier=TIER_FREE)
    premium = make_subscriber(tier=TIER_PREMIUM)

    result = asyncio.run(run_tier_dispatch(db, email_client, _generator(), TOPIC_AI_TOOLS, TIER_PREMIUM))

    newsletter = db.get(Newsletter, result.newsletterId)
    assert result.generated and result.sent == 1
    assert email_client.recipients == [premium.email]
    assert newsletter.ai_generated is True
    assert (newsletter.topic, newsletter.target_tier) == (TOPIC_AI_TOOLS, TIER_PREMIUM)
    assert newsletter.subject == "Today in AI"


def test_generation_failure_sends_nothing(db, make_subscriber, email_client):
    make_subscriber()

    result = asyncio.run(run_tier_dispatch(db, email_client, _generator(["not json"]), TOPIC_AI_TOOLS, TIER_FREE))

    assert result.generated is False
    assert result.error
    assert email_client.sent == []
    assert db.query(Newsletter).count() == 0


def test_scheduled_run_isolates_tier_failures(db, make_subscriber, email_client):
    free = make_subscriber(tier=TIER_FREE)
    pro = make_subscriber(tier=TIER_PRO)
    premium = make_subscriber(tier=TIER_PREMIUM)
    generator = _generator([
        ai_payload(subject="Free issue"),
        RuntimeError("AI is down"),
        ai_payload(subject="Premium issue"),
    ])

    results = asyncio.run(run_scheduled_dispatch(db, email_client, generator, TOPIC_AI_TOOLS))

    assert results["free"].generated and results["free"].sent == 3
    assert results["pro"].generated is False
    assert results["premium"].generated and results["premium"].sent == 1
    subjects = [(m["to"], m["subject"]) for m in email_client.sent]
    assert (free.email, "Free issue") in subjects
    assert (pro.email, "Free issue") in subjects
    assert (premium.email, "Premium issue") in subjects
    assert db.query(Newsletter).count() == 2


def test_admin_send_without_recipients_raises(db, email_client):
    with pytest.raises(ValueError):
        asyncio.run(send_admin_newsletter(db, email_client, "Subject", "<p>Body</p>"))
    assert db.query(Newsletter).count() == 0


def test_admin_send_records_audience(db, make_subscriber, email_client):
    target = make_subscriber()
    make_subscriber()

    newsletter, result = asyncio.run(
        send_admin_newsletter(db, email_client, "Subject", "<p>Body</p>", subscriber_ids=[target.id])
    )

    assert result.sent == 1
    assert newsletter.ai_generated is False
    assert newsletter.status == NEWSLETTER_STATUS_SENT
    assert '"subscriberIds": [' + str(target.id) + "]" in newsletter.audience_json


def test_only_eligible_subscribers_get_logs(db, make_subscriber, email_client):
    make_subscriber(tier=TIER_FREE)
    pro = make_subscriber(tier=TIER_PRO)
    premium = make_subscriber(tier=TIER_PREMIUM)

    result = asyncio.run(run_tier_dispatch(db, email_client, _generator(), TOPIC_AI_TOOLS, TIER_PRO))

    logged = {log.subscriber_id for log in _logs(db, result.newsletterId)}
    assert logged == {pro.id, premium.id}
    assert db.get(Newsletter, result.newsletterId).recipient_count == 2


def test_aborted_tier_run_reports_committed_batches(db, make_subscriber, email_client, monkeypatch):
    subscribers = [make_subscriber() for _ in range(3)]
    real_render = dispatch_service.render_personalized_email

    def render_until_third(content_html, subscriber):
        if subscriber.id == subscribers[2].id:
            raise RuntimeError("template exploded")
        return real_render(content_html, subscriber)

    monkeypatch.setattr(dispatch_service, "render_personalized_email", render_until_third)

    result = asyncio.run(run_tier_dispatch(db, email_client, _generator(), TOPIC_AI_TOOLS, TIER_FREE, batch_size=2))

    assert result.generated is True
    assert "template exploded" in result.error
    assert (result.sent, result.failed) == (2, 0)
    assert db.get(Newsletter, result.newsletterId).status == NEWSLETTER_STATUS_FAILED
    assert len(_logs(db, result.newsletterId)) == 2
