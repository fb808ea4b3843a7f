"""
Signed-URL cache.

The URL broker keeps issued URLs here keyed by ``(blob_ref, kind)``. The
cache is an explicit component handed to the broker, not module state, so
each app (and each test) gets its own instance with its own capacity.

Backed by Flask-Caching: SimpleCache in-process (bounded by
``URL_CACHE_THRESHOLD``) or Redis when ``URL_CACHE_TYPE`` is "redis" so
several web workers share issued URLs. Each entry's backend timeout is the
URL's remaining lifetime, so expired URLs also age out of the backend.
"""
from dataclasses import dataclass

import structlog
from flask_caching import Cache

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CachedURL:
    url: str
    expires_at: float


class URLCache:
    """Cache of issued URLs.

    Args:
        backend: A Flask-Caching ``Cache`` bound to an app
        key_prefix: Prefix for every key (namespaces shared Redis instances)
    """

    def __init__(self, backend: Cache, key_prefix: str = "url:"):
        self.backend = backend
        self.key_prefix = key_prefix

    def __repr__(self) -> str:
        return f"<URLCache prefix={self.key_prefix!r}>"

    def _key(self, blob_ref: str, kind: str) -> str:
        return f"{self.key_prefix}{kind}:{blob_ref}"

    def get(self, blob_ref: str, kind: str) -> CachedURL | None:
        entry = self.backend.get(self._key(blob_ref, kind))
        if not entry:
            return None
        return CachedURL(url=entry["url"], expires_at=float(entry["expires_at"]))

    def set(self, blob_ref: str, kind: str, url: str, expires_at: float, now: float) -> None:
        timeout = max(int(expires_at - now), 1)
        self.backend.set(
            self._key(blob_ref, kind),
            {"url": url, "expires_at": expires_at},
            timeout=timeout,
        )

    def delete(self, blob_ref: str, kind: str) -> None:
        self.backend.delete(self._key(blob_ref, kind))

    def clear(self) -> None:
        self.backend.clear()

    @classmethod
    def simple(cls, app, threshold: int = 2000, key_prefix: str = "url:") -> "URLCache":
        """In-process cache holding at most ``threshold`` entries."""
        backend = Cache(
            app,
            config={
                "CACHE_TYPE": "SimpleCache",
                "CACHE_THRESHOLD": threshold,
                "CACHE_DEFAULT_TIMEOUT": 300,
            },
        )
        return cls(backend, key_prefix=key_prefix)

    @classmethod
    def redis(cls, app, url: str, key_prefix: str = "dugout:url:") -> "URLCache":
        """Cache shared across processes through Redis."""
        backend = Cache(
            app,
            config={
                "CACHE_TYPE": "RedisCache",
                "CACHE_REDIS_URL": url,
                "CACHE_DEFAULT_TIMEOUT": 300,
            },
        )
        return cls(backend, key_prefix=key_prefix)


def init_url_cache(app) -> URLCache:
    """
    Build the URL cache configured for ``app``.

    Args:
        app: Flask application instance

    Returns:
        URLCache: The cache (also stored in ``app.extensions``)
    """
    cache_type = (app.config.get("URL_CACHE_TYPE") or "simple").lower()
    if cache_type == "redis":
        url_cache = URLCache.redis(app, app.config["REDIS_URL"])
    else:
        url_cache = URLCache.simple(
            app, threshold=int(app.config.get("URL_CACHE_THRESHOLD", 2000))
        )
    app.extensions["dugout.url_cache"] = url_cache
    logger.info("url_cache_initialized", backend=cache_type)
    return url_cache
