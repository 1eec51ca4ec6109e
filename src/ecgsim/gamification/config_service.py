"""Gamification config provider.

Reads go through a read-through cache:
  in-process entry (fresh within TTL) -> Redis ``gamification:config`` -> database.
Admin writes validate first, persist with audit fields, then drop both cache
layers. A broken row or an unavailable store never breaks a user-facing
computation: the last config that loaded successfully (or the defaults) is used.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import ValidationError

from ecgsim.config import get_settings
from ecgsim.exceptions import ConfigValidationError, StoreUnavailableError
from ecgsim.gamification.repository import GamificationStore
from ecgsim.gamification.schemas import GamificationConfig

logger = structlog.get_logger()

CONFIG_CACHE_KEY = "gamification:config"
DEFAULT_CONFIG = GamificationConfig()

# Set by the admin write path, never accepted from the payload
_PROTECTED_FIELDS = frozenset({"id", "updated_at", "updated_by"})


class ConfigProvider:
    """Process-wide cached access to the ``gamification_config`` row."""

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cached: GamificationConfig | None = None
        self._cached_at: float = 0.0
        self._last_good: GamificationConfig | None = None

    def invalidate(self) -> None:
        """Drop the in-process entry; the next read goes to Redis / the database."""
        self._cached = None

    def _remember(self, config: GamificationConfig) -> GamificationConfig:
        self._cached = config
        self._cached_at = self._clock()
        self._last_good = config
        return config

    def _fallback(self) -> GamificationConfig:
        return self._last_good or DEFAULT_CONFIG

    async def get(self, store: GamificationStore, redis: object = None) -> GamificationConfig:
        """Current config. Never raises for store or data problems."""
        if self._cached is not None and self._clock() - self._cached_at < self.ttl_seconds:
            return self._cached

        if redis is not None:
            cached = await self._read_redis(redis)
            if cached is not None:
                return self._remember(cached)

        try:
            values = await store.get_config_values()
        except StoreUnavailableError:
            logger.warning("gamification_config_unavailable", fallback="last_known_good", exc_info=True)
            return self._fallback()

        if values is None:
            logger.warning("gamification_config_missing", fallback="defaults")
            return DEFAULT_CONFIG

        try:
            config = GamificationConfig.model_validate(values)
        except ValidationError as exc:
            logger.warning("gamification_config_invalid", errors=exc.errors(), fallback="last_known_good")
            return self._fallback()

        if redis is not None:
            await self._write_redis(redis, config)
        return self._remember(config)

    async def update(
        self,
        store: GamificationStore,
        updates: dict[str, Any],
        updated_by: str,
        redis: object = None,
        now: datetime | None = None,
    ) -> GamificationConfig:
        """Validate and persist an admin change, then invalidate every cache layer.

        Raises ConfigValidationError when the merged config breaks an invariant;
        nothing is written in that case.
        """
        if now is None:
            now = datetime.now(timezone.utc)

        current_values = await store.get_config_values()
        base = current_values if current_values is not None else DEFAULT_CONFIG.model_dump()
        clean = {k: v for k, v in updates.items() if k not in _PROTECTED_FIELDS}
        unknown = set(clean) - set(GamificationConfig.model_fields)
        if unknown:
            raise ConfigValidationError(f"Unknown config fields: {sorted(unknown)}")

        try:
            config = GamificationConfig.model_validate(
                {**base, **clean, "updated_by": updated_by, "updated_at": now}
            )
        except ValidationError as exc:
            raise ConfigValidationError("Invalid gamification config", exc.errors()) from exc

        values = config.model_dump(exclude=set(_PROTECTED_FIELDS))
        await store.save_config_values(values, updated_by, now)

        self.invalidate()
        if redis is not None:
            try:
                await redis.delete(CONFIG_CACHE_KEY)  # type: ignore[attr-defined]
            except Exception:
                logger.warning("Failed to drop cached gamification config", exc_info=True)

        logger.info("gamification_config_updated", updated_by=updated_by, fields=sorted(clean))
        return config

    async def _read_redis(self, redis: object) -> GamificationConfig | None:
        try:
            raw = await redis.get(CONFIG_CACHE_KEY)  # type: ignore[attr-defined]
        except Exception:
            logger.warning("Failed to read cached gamification config", exc_info=True)
            return None
        if not raw:
            return None
        try:
            return GamificationConfig.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding malformed cached gamification config")
            return None

    async def _write_redis(self, redis: object, config: GamificationConfig) -> None:
        try:
            payload = config.model_dump_json()
            await redis.setex(CONFIG_CACHE_KEY, int(self.ttl_seconds), payload)  # type: ignore[attr-defined]
        except Exception:
            logger.warning("Failed to cache gamification config", exc_info=True)


_provider: ConfigProvider | None = None


def get_config_provider() -> ConfigProvider:
    """Process-wide provider with the TTL from settings."""
    global _provider  # noqa: PLW0603
    if _provider is None:
        _provider = ConfigProvider(ttl_seconds=get_settings().gamification_config_cache_ttl_seconds)
    return _provider


def reset_config_provider() -> None:
    """Forget the process-wide provider (tests, settings reload)."""
    global _provider  # noqa: PLW0603
    _provider = None
