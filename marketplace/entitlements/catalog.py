from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from threading import RLock
from typing import List, Optional

from .errors import ConfigUnavailableError
from .models import AccessCatalog, AccessTier, AccessTierId

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent.parent / "config" / "access_tiers.json"


class AccessCatalogLoader:
    """
    Loads the connection access catalog from a JSON file with reload support.

    Loading is lazy so the application starts even when the file is missing;
    reads then fail with ConfigUnavailableError, which callers surface as
    "feature temporarily unavailable". A changed file on disk (edited by an
    admin in another worker) is picked up on the next read.
    """

    def __init__(self, config_path: Optional[str] = None) -> None:
        self._config_path = Path(config_path) if config_path else DEFAULT_CATALOG_PATH
        self._lock = RLock()
        self._catalog: Optional[AccessCatalog] = None
        self._loaded_mtime: Optional[float] = None

    @property
    def config_path(self) -> Path:
        return self._config_path

    def reload(self) -> AccessCatalog:
        """Re-read the catalog from disk."""
        with self._lock:
            try:
                mtime = self._config_path.stat().st_mtime
                raw = self._read_config_file()
                catalog = self.parse_catalog(raw)
            except (OSError, ValueError) as exc:
                logger.error(
                    "Failed to load access catalog",
                    extra={"config_path": str(self._config_path), "error": str(exc)},
                )
                raise ConfigUnavailableError(str(exc), cause=exc) from exc
            self._catalog = catalog
            self._loaded_mtime = mtime
            return catalog

    def get_catalog(self) -> AccessCatalog:
        with self._lock:
            if self._catalog is None or self._is_stale():
                return self.reload()
            return self._catalog

    def list_enabled_tiers(self) -> List[AccessTier]:
        return self.get_catalog().list_enabled_tiers()

    def save(self, catalog: AccessCatalog) -> AccessCatalog:
        """Atomically replace the catalog file and the in-process copy."""
        if catalog.updated_at is None:
            catalog = AccessCatalog(
                tiers=catalog.tiers,
                free_access_fallback_enabled=catalog.free_access_fallback_enabled,
                free_access_duration_minutes=catalog.free_access_duration_minutes,
                disclaimer_email_content=catalog.disclaimer_email_content,
                updated_at=datetime.now(timezone.utc),
            )
        payload = json.dumps(catalog.to_dict(), indent=2, ensure_ascii=False)

        with self._lock:
            directory = self._config_path.parent
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(directory), prefix=".access_tiers.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                    handle.write("\n")
                os.replace(tmp_path, self._config_path)
            except OSError:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
            self._catalog = catalog
            self._loaded_mtime = self._config_path.stat().st_mtime

        logger.info(
            "Access catalog saved",
            extra={
                "config_path": str(self._config_path),
                "enabled_tiers": [t.id.value for t in catalog.list_enabled_tiers()],
                "free_fallback": catalog.free_access_fallback_enabled,
            },
        )
        return catalog

    def _is_stale(self) -> bool:
        try:
            return self._config_path.stat().st_mtime != self._loaded_mtime
        except OSError:
            # Keep serving the last good catalog if the file briefly disappears
            return False

    def _read_config_file(self) -> dict:
        with self._config_path.open("r", encoding="utf-8") as handle:
            raw = json.load(handle)
        if not isinstance(raw, dict):
            raise ValueError("access catalog must contain a top-level object")
        return raw

    @staticmethod
    def parse_catalog(raw: dict) -> AccessCatalog:
        options = raw.get("connectionAccessOptions")
        if not isinstance(options, list):
            raise ValueError("access catalog must include a list named 'connectionAccessOptions'")

        tiers: List[AccessTier] = []
        for option in options:
            if not isinstance(option, dict):
                raise ValueError(f"access option must be an object: {option!r}")
            tier_id = option.get("id")
            try:
                normalized_id = AccessTierId(tier_id)
            except ValueError:
                raise ValueError(f"unknown access tier id: {tier_id!r}")
            try:
                price = Decimal(str(option.get("price", 0)))
            except InvalidOperation:
                raise ValueError(f"tier {tier_id} has an invalid price: {option.get('price')!r}")
            tiers.append(
                AccessTier(
                    id=normalized_id,
                    label=option.get("label") or normalized_id.value,
                    price=price,
                    enabled=bool(option.get("enabled", False)),
                    duration_days=option.get("durationDays"),
                )
            )

        updated_at = raw.get("updatedAt")
        return AccessCatalog(
            tiers=tuple(tiers),
            free_access_fallback_enabled=bool(raw.get("isFreeAccessFallbackEnabled", False)),
            free_access_duration_minutes=raw.get("freeAccessDurationMinutes", 30),
            disclaimer_email_content=str(raw.get("disclaimerEmailContent") or ""),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )
