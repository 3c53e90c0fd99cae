"""Arq worker settings."""

from arq.connections import RedisSettings

from ledgerguard.config import get_settings

settings = get_settings()

redis_settings = RedisSettings.from_dsn(settings.redis_url)
