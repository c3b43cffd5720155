# clinic_booking/services/rate_limit.py
"""
Rate limiting por ventana fija con almacenamiento intercambiable.

- InMemoryRateLimitStore: un solo proceso (tests, desarrollo).
- RedisRateLimitStore: contador compartido entre instancias (REDIS_URL).

La instancia vive en `app.state.rate_limiter`; no hay contador global de módulo.
"""
from __future__ import annotations
import logging
import time
from threading import Lock
from typing import Callable, Optional, Protocol

import redis
from fastapi import Depends, Request

from ..auth import Actor, get_actor
from ..config import settings
from ..errors import RateLimitError

logger = logging.getLogger(__name__)


class RateLimitStore(Protocol):
    def hit(self, key: str, window_seconds: int) -> tuple[int, int]:
        """Registra un hit y devuelve (conteo en la ventana, segundos hasta el reset)."""
        ...


class InMemoryRateLimitStore:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._buckets: dict[str, tuple[int, float]] = {}
        self._lock = Lock()

    def hit(self, key: str, window_seconds: int) -> tuple[int, int]:
        now = self._clock()
        with self._lock:
            count, reset_at = self._buckets.get(key, (0, now + window_seconds))
            if now >= reset_at:
                count, reset_at = 0, now + window_seconds
            count += 1
            self._buckets[key] = (count, reset_at)
            # Limpieza oportunista de ventanas vencidas
            if len(self._buckets) > 10_000:
                self._buckets = {k: v for k, v in self._buckets.items() if v[1] > now}
        return count, max(0, int(reset_at - now))


class RedisRateLimitStore:
    def __init__(self, client: redis.Redis, prefix: str = "rl:"):
        self._client = client
        self._prefix = prefix

    def hit(self, key: str, window_seconds: int) -> tuple[int, int]:
        k = f"{self._prefix}{key}"
        pipe = self._client.pipeline()
        pipe.incr(k)
        pipe.ttl(k)
        count, ttl = pipe.execute()
        if ttl is None or ttl < 0:
            self._client.expire(k, window_seconds)
            ttl = window_seconds
        return int(count), int(ttl)


class RateLimiter:
    def __init__(self, store: RateLimitStore, limit: int, window_seconds: int):
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds

    def check(self, key: str) -> None:
        try:
            count, reset_in = self.store.hit(key, self.window_seconds)
        except redis.RedisError as e:
            # Fail-open: si el store compartido cae, no bloqueamos reservas
            logger.warning("Rate limit store no disponible (%s); se permite el request", e)
            return
        if count > self.limit:
            raise RateLimitError(
                "Demasiadas solicitudes, intente más tarde",
                details={"limit": self.limit, "retry_after": reset_in},
            )


def build_rate_limiter(redis_url: Optional[str] = None) -> RateLimiter:
    redis_url = redis_url if redis_url is not None else settings.REDIS_URL
    if redis_url:
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        store: RateLimitStore = RedisRateLimitStore(client)
        logger.info("Rate limiting con Redis compartido")
    else:
        store = InMemoryRateLimitStore()
        logger.info("Rate limiting en memoria (una sola instancia)")
    return RateLimiter(store, settings.RATE_LIMIT_REQUESTS, settings.RATE_LIMIT_WINDOW_SECONDS)


def enforce_rate_limit(request: Request, actor: Actor = Depends(get_actor)) -> None:
    limiter: Optional[RateLimiter] = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        return
    limiter.check(f"{request.method}:{request.url.path}:{actor.user_id}")
