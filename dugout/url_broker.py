"""
Secure access-URL broker.

Issues short-lived download URLs for private blobs and caches them per
``(blob_ref, kind)``:

- Every URL expires no later than its kind's hard ceiling (video 24 hours,
  thumbnail 7 days), whatever TTL configuration or callers ask for.
- A cached URL is reused while ``now < expires_at - safety_margin``; inside
  the margin it counts as a miss and is re-signed and replaced.
- Batch requests are capped and sign each distinct uncached ref once.
  Entries resolve independently: one failing signature does not fail the
  rest of the batch.
"""
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

import structlog
from flask import current_app

from dugout.cache import URLCache
from dugout.errors import BatchTooLarge, UpstreamUnavailable

logger = structlog.get_logger(__name__)


class UrlKind(Enum):
    """
    Kinds of blob a URL can point at, each with its own TTL ceiling.

    - VIDEO: 24 hours
    - THUMBNAIL: 7 days
    """

    VIDEO = "video"
    THUMBNAIL = "thumbnail"

    @property
    def max_ttl(self) -> int:
        return MAX_TTL_SECONDS[self]


MAX_TTL_SECONDS = {
    UrlKind.VIDEO: 24 * 3600,
    UrlKind.THUMBNAIL: 7 * 24 * 3600,
}

DEFAULT_SAFETY_MARGIN = 300
DEFAULT_BATCH_LIMIT = 50


@dataclass(frozen=True)
class IssuedURL:
    url: str
    expires_at: float

    @property
    def expires_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.expires_at, tz=timezone.utc)

    def to_dict(self) -> dict:
        return {"url": self.url, "expires_at": self.expires_at_datetime.isoformat()}


class AccessUrlBroker:
    """Issues and caches signed URLs.

    Args:
        signer: URL-signing collaborator exposing ``sign(ref, ttl) -> url``
        cache: URLCache instance owned by this broker
        clock: Returns current epoch seconds (injectable for tests)
        ttls: Optional per-kind TTL overrides; clamped to the kind's ceiling
        safety_margin: Seconds before expiry at which a cached URL is refreshed
        batch_limit: Maximum refs accepted by :meth:`get_batch_urls`
    """

    def __init__(
        self,
        signer,
        cache: URLCache,
        clock: Callable[[], float] = time.time,
        ttls: dict | None = None,
        safety_margin: int = DEFAULT_SAFETY_MARGIN,
        batch_limit: int = DEFAULT_BATCH_LIMIT,
    ):
        self.signer = signer
        self.cache = cache
        self.clock = clock
        self.safety_margin = max(int(safety_margin), 0)
        self.batch_limit = int(batch_limit)
        self.ttls = {}
        for kind in UrlKind:
            requested = int((ttls or {}).get(kind, kind.max_ttl))
            self.ttls[kind] = min(max(requested, 1), kind.max_ttl)
        if any(ttl <= self.safety_margin for ttl in self.ttls.values()):
            raise ValueError("URL TTLs must exceed the cache safety margin")

    def __repr__(self) -> str:
        return f"<AccessUrlBroker batch_limit={self.batch_limit}>"

    def _fresh(self, entry, now: float) -> bool:
        return entry is not None and now < entry.expires_at - self.safety_margin

    def _issue(self, blob_ref: str, kind: UrlKind, now: float) -> IssuedURL:
        ttl = self.ttls[kind]
        try:
            url = self.signer.sign(blob_ref, ttl)
        except UpstreamUnavailable:
            raise
        except Exception as e:
            logger.warning(
                "url_signing_failed", blob_ref=blob_ref, kind=kind.value, error=str(e)
            )
            raise UpstreamUnavailable(f"Could not sign URL for {blob_ref}") from e
        issued = IssuedURL(url=url, expires_at=float(int(now) + ttl))
        self.cache.set(blob_ref, kind.value, issued.url, issued.expires_at, now)
        logger.debug("url_issued", blob_ref=blob_ref, kind=kind.value, ttl=ttl)
        return issued

    def get_url(self, blob_ref: str, kind: UrlKind | str) -> IssuedURL:
        """
        Cached-or-fresh URL for one blob.

        Args:
            blob_ref: Storage ref of the blob
            kind: UrlKind (or its string value)

        Returns:
            IssuedURL: URL and its expiry (epoch seconds)

        Raises:
            UpstreamUnavailable: If signing fails
        """
        if not blob_ref:
            raise ValueError("blob_ref is required")
        kind = UrlKind(kind)
        now = self.clock()
        cached = self.cache.get(blob_ref, kind.value)
        if self._fresh(cached, now):
            return IssuedURL(url=cached.url, expires_at=cached.expires_at)
        return self._issue(blob_ref, kind, now)

    def get_batch_urls(
        self, refs: Iterable[tuple[str, UrlKind | str]]
    ) -> dict[tuple[str, UrlKind], IssuedURL | UpstreamUnavailable]:
        """
        Resolve many ``(blob_ref, kind)`` pairs at once.

        Duplicates are collapsed, so each distinct uncached pair is signed at
        most once. The result maps every requested pair to either its
        IssuedURL or the UpstreamUnavailable raised while signing it.

        Raises:
            BatchTooLarge: If more refs than ``batch_limit`` are requested
        """
        pairs = [(ref, UrlKind(kind)) for ref, kind in refs]
        if len(pairs) > self.batch_limit:
            raise BatchTooLarge(len(pairs), self.batch_limit)

        now = self.clock()
        results: dict = {}
        signed = 0
        for pair in dict.fromkeys(pairs):
            blob_ref, kind = pair
            if not blob_ref:
                results[pair] = UpstreamUnavailable("Empty blob reference")
                continue
            cached = self.cache.get(blob_ref, kind.value)
            if self._fresh(cached, now):
                results[pair] = IssuedURL(url=cached.url, expires_at=cached.expires_at)
                continue
            try:
                results[pair] = self._issue(blob_ref, kind, now)
                signed += 1
            except UpstreamUnavailable as e:
                results[pair] = e

        logger.info(
            "url_batch_resolved",
            requested=len(pairs),
            distinct=len(results),
            signed=signed,
        )
        return results

    def invalidate(self, blob_ref: str) -> None:
        """Forget cached URLs of every kind for a blob (after deletion)."""
        for kind in UrlKind:
            self.cache.delete(blob_ref, kind.value)

    def clear(self) -> None:
        """Drop every cached URL, e.g. after rotating the signing key."""
        self.cache.clear()
        logger.info("url_cache_cleared")


def init_url_broker(app, url_cache: URLCache) -> AccessUrlBroker:
    from dugout.security.signed_media import signer_from_config

    broker = AccessUrlBroker(
        signer=signer_from_config(app),
        cache=url_cache,
        ttls={
            UrlKind.VIDEO: app.config.get("VIDEO_URL_TTL", MAX_TTL_SECONDS[UrlKind.VIDEO]),
            UrlKind.THUMBNAIL: app.config.get(
                "THUMBNAIL_URL_TTL", MAX_TTL_SECONDS[UrlKind.THUMBNAIL]
            ),
        },
        safety_margin=app.config.get("URL_CACHE_SAFETY_MARGIN", DEFAULT_SAFETY_MARGIN),
        batch_limit=app.config.get("URL_BATCH_LIMIT", DEFAULT_BATCH_LIMIT),
    )
    app.extensions["dugout.url_broker"] = broker
    return broker


def get_broker() -> AccessUrlBroker:
    return current_app.extensions["dugout.url_broker"]
