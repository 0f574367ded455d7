from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from conftest import T0, seed_people
from marketplace.database.session import build_engine, build_session_factory, init_db
from marketplace.entitlements.errors import (
    DuplicatePaymentError,
    InvalidTierError,
    NotAuthenticatedError,
    PaymentNotVerifiedError,
    WriteFailedError,
)
from marketplace.entitlements.events import EVENT_DELETED, EVENT_GRANTED, EVENT_REVIEW_REQUESTED
from marketplace.entitlements.models import AccessCatalog, AccessTier, AccessTierId
from marketplace.entitlements.store import ConnectionStore
from marketplace.models.connection import UserProviderConnection
from marketplace.models.review_request import ReviewRequest


@pytest.fixture
def store(db_session, event_bus, clock):
    return ConnectionStore(db_session, event_bus=event_bus, clock=clock)


@pytest.fixture
def catalog(catalog_loader):
    return catalog_loader.get_catalog()


def _count_rows(session):
    return session.execute(select(func.count()).select_from(UserProviderConnection)).scalar()


@pytest.mark.parametrize("tier_id,days", [("oneTime", 1), ("sevenDays", 7)])
def test_grant_expiry_is_exact(store, catalog, tier_id, days):
    record = store.grant("user-1", "provider-1", tier_id, f"pay_{tier_id}", catalog=catalog)

    assert record.granted_at == T0
    assert record.expires_at == T0 + timedelta(days=days)
    assert record.review_requested is False
    assert store.read("user-1", "provider-1") == record


def test_lifetime_grant_has_no_expiry(store, catalog_loader):
    catalog = catalog_loader.get_catalog()
    catalog_loader.save(AccessCatalog(
        tiers=tuple(
            AccessTier(id=t.id, label=t.label, price=t.price, enabled=True, duration_days=t.duration_days)
            for t in catalog.tiers
        ),
        free_access_fallback_enabled=True,
        free_access_duration_minutes=30,
        disclaimer_email_content=catalog.disclaimer_email_content,
    ))

    record = store.grant("user-1", "provider-1", "lifetime", "pay_life", catalog=catalog_loader.get_catalog())

    assert record.access_type == AccessTierId.LIFETIME
    assert record.expires_at is None


def test_grant_stores_amount_paid(store, catalog, db_session):
    store.grant("user-1", "provider-1", "sevenDays", "pay_1", catalog=catalog)

    row = db_session.get(UserProviderConnection, ("user-1", "provider-1"))
    assert row.amount_paid == Decimal("250")
    assert row.payment_id == "pay_1"


def test_grant_requires_user(store, catalog):
    with pytest.raises(NotAuthenticatedError):
        store.grant(None, "provider-1", "sevenDays", "pay_1", catalog=catalog)


def test_grant_rejects_unknown_and_disabled_tiers(store, catalog, db_session):
    with pytest.raises(InvalidTierError):
        store.grant("user-1", "provider-1", "weekly", "pay_1", catalog=catalog)
    with pytest.raises(InvalidTierError):
        store.grant("user-1", "provider-1", "thirtyDays", "pay_1", catalog=catalog)

    assert _count_rows(db_session) == 0


def test_paid_tier_without_payment_is_not_written(store, catalog, db_session):
    with pytest.raises(PaymentNotVerifiedError):
        store.grant("user-1", "provider-1", "sevenDays", None, catalog=catalog)

    assert _count_rows(db_session) == 0


def test_free_grant_refused_while_paid_tiers_enabled(store, catalog, db_session):
    with pytest.raises(InvalidTierError):
        store.grant("user-1", "provider-1", "free", catalog=catalog)

    assert _count_rows(db_session) == 0


def test_free_grant_scenario(store, free_only_loader):
    record = store.grant("user-1", "provider-1", "free", catalog=free_only_loader.get_catalog())

    assert record.access_type == AccessTierId.FREE
    assert record.expires_at == T0 + timedelta(minutes=30)
    assert record.payment_id is None


def test_regrant_after_expiry_resets_record(store, catalog, clock, db_session):
    store.grant("user-1", "provider-1", "oneTime", "pay_1", catalog=catalog)
    clock.advance(days=3)
    assert store.mark_review_requested("user-1", "provider-1") is True

    renewed = store.grant("user-1", "provider-1", "sevenDays", "pay_2", catalog=catalog)

    assert renewed.granted_at == clock.now
    assert renewed.expires_at == clock.now + timedelta(days=7)
    assert renewed.review_requested is False
    assert renewed.payment_id == "pay_2"
    assert store.read("user-1", "provider-1") == renewed
    assert _count_rows(db_session) == 1


def test_same_payment_same_key_is_idempotent(store, catalog, clock):
    first = store.grant("user-1", "provider-1", "sevenDays", "pay_1", catalog=catalog)
    clock.advance(hours=1)

    again = store.grant("user-1", "provider-1", "sevenDays", "pay_1", catalog=catalog)

    assert again == first


def test_payment_id_cannot_back_two_records(store, catalog, db_session):
    store.grant("user-1", "provider-1", "sevenDays", "pay_1", catalog=catalog)

    with pytest.raises(DuplicatePaymentError) as exc_info:
        store.grant("user-1", "provider-2", "sevenDays", "pay_1", catalog=catalog)

    assert exc_info.value.existing_record_id == "user-1_provider-1"
    assert store.read("user-1", "provider-2") is None


def test_mark_review_requested_is_idempotent(store, catalog, db_session):
    store.grant("user-1", "provider-1", "sevenDays", "pay_1", catalog=catalog)

    assert store.mark_review_requested("user-1", "provider-1") is True
    assert store.mark_review_requested("user-1", "provider-1") is False

    assert store.read("user-1", "provider-1").review_requested is True
    assert db_session.execute(select(func.count()).select_from(ReviewRequest)).scalar() == 0


def test_mark_review_requested_on_missing_record_is_noop(store):
    assert store.mark_review_requested("user-1", "provider-1") is False


def test_write_failure_raises_write_failed(store, catalog, db_session):
    with patch.object(db_session, "commit", side_effect=OperationalError("INSERT", {}, Exception("disk full"))):
        with pytest.raises(WriteFailedError) as exc_info:
            store.grant("user-1", "provider-1", "sevenDays", "pay_1", catalog=catalog)

    assert exc_info.value.payment_id == "pay_1"
    assert store.read("user-1", "provider-1") is None


def test_writes_publish_events(store, catalog, event_bus):
    received = []
    with event_bus.subscribe("user-1", "provider-1", received.append):
        store.grant("user-1", "provider-1", "sevenDays", "pay_1", catalog=catalog)
        store.mark_review_requested("user-1", "provider-1")
        store.delete("user-1", "provider-1")

    assert [e.kind for e in received] == [EVENT_GRANTED, EVENT_REVIEW_REQUESTED, EVENT_DELETED]
    assert received[0].record.payment_id == "pay_1"
    assert received[1].record.review_requested is True
    assert received[2].record is None


def test_delete_missing_record_returns_false(store):
    assert store.delete("user-1", "provider-1") is False


def test_list_records_newest_first(store, catalog, clock):
    store.grant("user-1", "provider-1", "sevenDays", "pay_1", catalog=catalog)
    clock.advance(minutes=5)
    store.grant("user-2", "provider-1", "oneTime", "pay_2", catalog=catalog)

    records = store.list_records()

    assert [r.user_id for r in records] == ["user-2", "user-1"]
    assert store.find_by_payment_id("pay_1").user_id == "user-1"


def test_interleaved_first_grants_last_write_wins(tmp_path, catalog, clock):
    engine = build_engine(f"sqlite:///{tmp_path / 'grants.db'}")
    init_db(engine)
    factory = build_session_factory(engine)
    seeder = factory()
    seed_people(seeder)
    seeder.close()
    first, second = factory(), factory()
    store_a = ConnectionStore(first, clock=clock)
    store_b = ConnectionStore(second, clock=clock)

    add = second.add
    interleaved = []

    def add_after_other_grant(instance, *args, **kwargs):
        if not interleaved:
            interleaved.append(store_a.grant("user-1", "provider-1", "sevenDays", "pay_A", catalog=catalog))
        return add(instance, *args, **kwargs)

    try:
        with patch.object(second, "add", side_effect=add_after_other_grant):
            record = store_b.grant("user-1", "provider-1", "oneTime", "pay_B", catalog=catalog)

        assert interleaved[0].payment_id == "pay_A"
        assert record.payment_id == "pay_B"
        assert store_a.read("user-1", "provider-1") == record
        assert _count_rows(first) == 1
    finally:
        first.close()
        second.close()
        engine.dispose()
