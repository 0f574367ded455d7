from __future__ import annotations

import json
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import T0, catalog_document, write_catalog
from marketplace.entitlements.catalog import AccessCatalogLoader
from marketplace.entitlements.errors import ConfigUnavailableError
from marketplace.entitlements.models import (
    AccessCatalog,
    AccessTier,
    AccessTierId,
    OfferKind,
)


def test_list_enabled_tiers_keeps_catalog_order(catalog_loader):
    tiers = catalog_loader.list_enabled_tiers()

    assert [t.id for t in tiers] == [AccessTierId.ONE_TIME, AccessTierId.SEVEN_DAYS]
    assert tiers[1].price == Decimal("250")
    assert tiers[1].duration_days == 7


def test_missing_catalog_file_raises_config_unavailable(tmp_path):
    loader = AccessCatalogLoader(str(tmp_path / "missing.json"))

    with pytest.raises(ConfigUnavailableError):
        loader.list_enabled_tiers()


def test_malformed_catalog_raises_config_unavailable(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text('{"connectionAccessOptions": [{"id": "weekly", "price": 10}]}', encoding="utf-8")
    loader = AccessCatalogLoader(str(path))

    with pytest.raises(ConfigUnavailableError):
        loader.get_catalog()


def test_negative_price_is_rejected(tmp_path):
    document = catalog_document()
    document["connectionAccessOptions"][0]["price"] = -5
    path = tmp_path / "neg.json"
    path.write_text(json.dumps(document), encoding="utf-8")

    with pytest.raises(ConfigUnavailableError):
        AccessCatalogLoader(str(path)).get_catalog()


def test_lifetime_tier_ignores_duration():
    tier = AccessTier(id="lifetime", label="Lifetime", price=2000, duration_days=365)

    assert tier.duration_days is None
    assert tier.expires_at_for(T0) is None


@pytest.mark.parametrize("tier_id,days", [("oneTime", 1), ("sevenDays", 7), ("thirtyDays", 30)])
def test_timed_tier_expiry_is_exact_days(tier_id, days):
    tier = AccessTier(id=tier_id, label=tier_id, price=10, duration_days=days)

    assert tier.expires_at_for(T0) - T0 == timedelta(days=days)


def test_timed_tier_requires_positive_duration():
    with pytest.raises(ValueError):
        AccessTier(id="sevenDays", label="7 Days", price=250, duration_days=0)


def test_amount_minor_rounds_half_up():
    assert AccessTier(id="oneTime", label="x", price="49.995", duration_days=1).amount_minor == 5000
    assert AccessTier(id="oneTime", label="x", price=50, duration_days=1).amount_minor == 5000


def test_offer_is_paid_when_any_tier_enabled(catalog_loader):
    offer = catalog_loader.get_catalog().resolve_offer()

    assert offer.kind == OfferKind.PAID
    assert [t.id.value for t in offer.tiers] == ["oneTime", "sevenDays"]


def test_offer_is_free_when_only_fallback_enabled(free_only_loader):
    catalog = free_only_loader.get_catalog()
    offer = catalog.resolve_offer()

    assert offer.kind == OfferKind.FREE
    assert offer.tiers[0].id == AccessTierId.FREE
    assert offer.tiers[0].duration == timedelta(minutes=30)
    assert catalog.free_grant_allowed is True


def test_offer_unavailable_when_nothing_enabled(tmp_path):
    path = write_catalog(tmp_path / "off.json", one_time=False, seven_days=False, free_fallback=False)
    offer = AccessCatalogLoader(str(path)).get_catalog().resolve_offer()

    assert offer.kind == OfferKind.UNAVAILABLE
    assert offer.tiers == ()
    assert "not currently enabled" in offer.message


def test_free_tier_not_grantable_while_paid_tier_enabled(catalog_loader):
    catalog = catalog_loader.get_catalog()

    assert catalog.free_grant_allowed is False
    assert catalog.get_tier("free").enabled is False


def test_catalog_rejects_listed_free_tier():
    free = AccessTier(id="free", label="Free", price=0, duration_minutes=30)

    with pytest.raises(ValueError):
        AccessCatalog(tiers=(free,))


def test_save_replaces_file_and_cached_copy(catalog_loader, catalog_path):
    catalog = catalog_loader.get_catalog()
    updated = AccessCatalog(
        tiers=tuple(
            AccessTier(
                id=t.id,
                label=t.label,
                price=t.price,
                enabled=(t.id == AccessTierId.LIFETIME),
                duration_days=t.duration_days,
            )
            for t in catalog.tiers
        ),
        free_access_fallback_enabled=False,
        free_access_duration_minutes=45,
        disclaimer_email_content=catalog.disclaimer_email_content,
    )

    saved = catalog_loader.save(updated)

    assert saved.updated_at is not None
    assert [t.id for t in catalog_loader.list_enabled_tiers()] == [AccessTierId.LIFETIME]

    fresh = AccessCatalogLoader(str(catalog_path)).get_catalog()
    assert [t.id for t in fresh.list_enabled_tiers()] == [AccessTierId.LIFETIME]
    assert fresh.free_access_duration_minutes == 45
    assert fresh.free_access_fallback_enabled is False


def test_to_dict_round_trips_through_parser(catalog_loader):
    catalog = catalog_loader.get_catalog()

    parsed = AccessCatalogLoader.parse_catalog(catalog.to_dict())

    assert parsed.tiers == catalog.tiers
    assert parsed.free_access_duration_minutes == catalog.free_access_duration_minutes
