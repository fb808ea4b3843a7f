"""
Error taxonomy shared by the service layer and the JSON API.

Every service operation reports failures with one of these exception types.
Each carries the HTTP status and a short machine-readable code so the API
error handler can render it without a lookup table.

Authorization and staleness errors are meant to be surfaced to the caller
verbatim; callers should never retry them automatically.
"""


class DugoutError(Exception):
    """Base class for all domain errors."""

    status_code = 500
    code = "error"

    def __init__(self, message: str | None = None, **details):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code).strip()
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class StaleVersion(DugoutError):
    """The record was modified since it was read."""

    status_code = 409
    code = "stale_version"

    def __init__(self, record_id: str, expected: int, current: int):
        super().__init__(
            f"Record {record_id} is at version {current}, expected {expected}",
            record_id=record_id,
            expected_version=expected,
            current_version=current,
        )
        self.record_id = record_id
        self.expected = expected
        self.current = current


class NotFound(DugoutError):
    """The referenced entity does not exist."""

    status_code = 404
    code = "not_found"


class Forbidden(DugoutError):
    """The caller lacks the required permission or role."""

    status_code = 403
    code = "forbidden"


class Expired(DugoutError):
    """The invitation is past its expiry."""

    status_code = 410
    code = "expired"


class BatchTooLarge(DugoutError):
    """Too many references were requested in one batch."""

    status_code = 413
    code = "batch_too_large"

    def __init__(self, requested: int, limit: int):
        super().__init__(
            f"Batch of {requested} references exceeds the limit of {limit}",
            requested=requested,
            limit=limit,
        )
        self.requested = requested
        self.limit = limit


class UpstreamUnavailable(DugoutError):
    """A storage, signing or notification collaborator failed."""

    status_code = 503
    code = "upstream_unavailable"
