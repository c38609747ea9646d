"""Tests for segment selection."""
import pytest

from newsly.models.subscriber import (
    TIER_FREE,
    TIER_PRO,
    TIER_PREMIUM,
    TOPIC_AI_TOOLS,
    TOPIC_CRYPTO,
    TOPIC_STOCK_MARKET,
)
from newsly.services.segment_service import select_admin_recipients, select_segment, tiers_for_target


def test_tiers_for_target_includes_higher_tiers():
    assert tiers_for_target(TIER_FREE) == [TIER_FREE, TIER_PRO, TIER_PREMIUM]
    assert tiers_for_target(TIER_PRO) == [TIER_PRO, TIER_PREMIUM]
    assert tiers_for_target(TIER_PREMIUM) == [TIER_PREMIUM]


def test_tiers_for_target_rejects_unknown_tier():
    with pytest.raises(ValueError):
        tiers_for_target("GOLD")


def test_free_send_reaches_every_tier(db, make_subscriber):
    free = make_subscriber(tier=TIER_FREE)
    pro = make_subscriber(tier=TIER_PRO)
    premium = make_subscriber(tier=TIER_PREMIUM)

    segment = select_segment(db, TOPIC_AI_TOOLS, TIER_FREE)

    assert [s.id for s in segment] == [free.id, pro.id, premium.id]


def test_pro_send_excludes_free(db, make_subscriber):
    make_subscriber(tier=TIER_FREE)
    pro = make_subscriber(tier=TIER_PRO)
    premium = make_subscriber(tier=TIER_PREMIUM)

    segment = select_segment(db, TOPIC_AI_TOOLS, TIER_PRO)

    assert [s.id for s in segment] == [pro.id, premium.id]


def test_segment_requires_topic_digest_and_active_subscription(db, make_subscriber):
    wanted = make_subscriber(topics=[TOPIC_AI_TOOLS])
    make_subscriber(topics=[TOPIC_STOCK_MARKET])
    make_subscriber(topics=[TOPIC_AI_TOOLS], unsubscribed=True)
    make_subscriber(topics=[TOPIC_AI_TOOLS], daily_digest=False)

    segment = select_segment(db, TOPIC_AI_TOOLS, TIER_FREE)

    assert [s.id for s in segment] == [wanted.id]


def test_empty_segment_is_valid(db, make_subscriber):
    make_subscriber(tier=TIER_FREE)

    assert select_segment(db, TOPIC_CRYPTO, TIER_PRO) == []


def test_segment_rejects_unknown_topic(db):
    with pytest.raises(ValueError):
        select_segment(db, "SPORTS", TIER_FREE)


def test_admin_recipients_prefer_ids_over_topics(db, make_subscriber):
    first = make_subscriber(topics=[TOPIC_AI_TOOLS])
    make_subscriber(topics=[TOPIC_STOCK_MARKET])

    recipients = select_admin_recipients(db, subscriber_ids=[first.id], target_topics=[TOPIC_STOCK_MARKET])

    assert [s.id for s in recipients] == [first.id]


def test_admin_recipients_match_any_topic(db, make_subscriber):
    ai = make_subscriber(topics=[TOPIC_AI_TOOLS])
    stocks = make_subscriber(topics=[TOPIC_STOCK_MARKET])
    make_subscriber(tier=TIER_PRO, topics=[TOPIC_CRYPTO])

    recipients = select_admin_recipients(db, target_topics=[TOPIC_AI_TOOLS, TOPIC_STOCK_MARKET])

    assert [s.id for s in recipients] == [ai.id, stocks.id]


def test_admin_recipients_skip_unsubscribed(db, make_subscriber):
    active = make_subscriber()
    gone = make_subscriber(unsubscribed=True)

    assert [s.id for s in select_admin_recipients(db)] == [active.id]
    assert [s.id for s in select_admin_recipients(db, subscriber_ids=[gone.id])] == []
