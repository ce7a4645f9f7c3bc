"""Error taxonomy shared by the orchestrators, adapters and HTTP layer.

Every error the control panel surfaces to a caller is a SiteHostError subclass.
Each class carries the HTTP status code it maps to, so the API layer never has
to inspect upstream-specific payloads.

Hierarchy:
    SiteHostError
    +-- Unauthenticated      (401)
    +-- Forbidden            (403)
    +-- NotFound             (404)
    +-- Conflict             (409)
    +-- ValidationError      (400)
    +-- UploadTooLarge       (413)
    +-- UpstreamError        (502)
    +-- RegistryError        (500)
    +-- PostCommitSyncError  (500)
    +-- DeadlineExceeded     (504)
"""

from __future__ import annotations


class SiteHostError(Exception):
    """Base class for all user-facing control panel errors.

    Attributes:
        message: Human-readable error message returned to the caller.
        detail: Optional raw diagnostic detail (upstream message, SQL error, ...).
    """

    status_code: int = 500

    def __init__(self, message: str, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class Unauthenticated(SiteHostError):
    status_code = 401


class Forbidden(SiteHostError):
    status_code = 403


class NotFound(SiteHostError):
    status_code = 404


class Conflict(SiteHostError):
    """Duplicate subdomain or stale content fingerprint."""

    status_code = 409


class ValidationError(SiteHostError):
    status_code = 400


class UploadTooLarge(ValidationError):
    status_code = 413


class UpstreamError(SiteHostError):
    """An external API (content host, DNS) failed or rejected a request.

    Attributes:
        service: Which upstream failed ("github", "cloudflare").
        upstream_status: HTTP status returned by the upstream, if any.
    """

    status_code = 502

    def __init__(
        self,
        message: str,
        service: str = "upstream",
        upstream_status: int | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message, detail=detail or message)
        self.service = service
        self.upstream_status = upstream_status


class RegistryError(SiteHostError):
    """The relational store rejected or failed a write."""

    status_code = 500


class PostCommitSyncError(SiteHostError):
    """External write succeeded but the registry could not record it.

    The content host and the registry have diverged; operators should run
    ``python -m sriox audit`` to find the affected site.

    Attributes:
        fingerprint: The fingerprint the content host now holds.
    """

    status_code = 500

    def __init__(self, message: str, fingerprint: str | None = None, detail: str | None = None) -> None:
        super().__init__(message, detail=detail)
        self.fingerprint = fingerprint


class DeadlineExceeded(SiteHostError):
    status_code = 504
