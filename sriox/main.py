"""Sriox Sites - static site hosting control panel.

This FastAPI service lets signed-in users publish a set of web files as a
GitHub Pages site under <subdomain>.<base domain> and edit them in place:

    GET    /health                                 - Health check
    POST   /api/sites                              - Create a site (multipart upload)
    GET    /api/sites                              - List the caller's sites
    DELETE /api/sites/{site_id}                    - Delete a site
    GET    /api/sites/{site_id}/files              - List files with content
    GET    /api/sites/{site_id}/files/{file_id}    - Get one file with content
    PUT    /api/sites/{site_id}/files/{file_id}    - Update a file (fingerprint required)
    POST   /api/https                              - Check or enable HTTPS

Every response is JSON with a ``success`` boolean and either the result
payload or an ``error`` string.

Security:
    - Every /api endpoint requires a bearer session token (SESSION_SECRET)
    - All registry access is scoped by the token's owner id
    - Uploaded file names are flat; path traversal is rejected

Adapters and the registry are built once by ``build_services`` and handed to
``create_app``; run with ``python -m sriox serve``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, Literal, TypeVar

import httpx
from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .auth import SessionAuthenticator
from .config import Settings, load_settings
from .content_host import GitHubPages
from .dns import CloudflareDns
from .editing import EditOrchestrator
from .errors import DeadlineExceeded, PostCommitSyncError, SiteHostError, UpstreamError, ValidationError
from .provisioning import ProvisioningOrchestrator, UploadedFile
from .publishing import PublishingService, friendly_message
from .registry import Registry

_LOG = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Service wiring
# =============================================================================


@dataclass
class Services:
    """Everything a request handler needs, constructed once per process.

    Attributes:
        settings: Resolved configuration.
        registry: Site/file metadata store.
        content_host: GitHub adapter.
        dns: Cloudflare adapter.
        authenticator: Session token verifier.
        provisioning: Site create/delete orchestrator.
        editing: File read/update orchestrator.
        publishing: HTTPS status and enablement.
    """

    settings: Settings
    registry: Registry
    content_host: GitHubPages
    dns: CloudflareDns
    authenticator: SessionAuthenticator
    provisioning: ProvisioningOrchestrator
    editing: EditOrchestrator
    publishing: PublishingService

    @classmethod
    def wire(
        cls,
        settings: Settings,
        registry: Registry,
        content_host: GitHubPages,
        dns: CloudflareDns,
    ) -> Services:
        """Build the orchestrators on top of the given adapters."""
        return cls(
            settings=settings,
            registry=registry,
            content_host=content_host,
            dns=dns,
            authenticator=SessionAuthenticator(settings.session_secret, settings.session_lifetime),
            provisioning=ProvisioningOrchestrator(registry, content_host, dns, settings),
            editing=EditOrchestrator(registry, content_host),
            publishing=PublishingService(registry, content_host, settings),
        )


def build_services(
    settings: Settings | None = None,
    github_transport: httpx.AsyncBaseTransport | None = None,
    cloudflare_transport: httpx.AsyncBaseTransport | None = None,
) -> Services:
    """Construct real adapters from settings (environment by default)."""
    settings = settings or load_settings()
    return Services.wire(
        settings=settings,
        registry=Registry(settings.db_path),
        content_host=GitHubPages.from_settings(settings, transport=github_transport),
        dns=CloudflareDns.from_settings(settings, transport=cloudflare_transport),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def current_owner(
    services: Services = Depends(get_services),
    authorization: str | None = Header(None),
) -> str:
    """Resolve the caller's owner id from the Authorization header."""
    return services.authenticator.authenticate(authorization)


async def with_deadline(services: Services, operation: Awaitable[T]) -> T:
    """Bound one saga by the configured deadline.

    Raises:
        DeadlineExceeded: The deadline passed. A cancelled provision rolls back
            its completed steps first; anything the rollback could not undo is
            reported by the audit.
    """
    try:
        return await asyncio.wait_for(operation, timeout=services.settings.saga_timeout)
    except TimeoutError as e:
        _LOG.error("Operation exceeded %.0fs deadline", services.settings.saga_timeout)
        raise DeadlineExceeded(
            "Operation timed out. The site may need manual reconciliation "
            "(run `python -m sriox audit`)."
        ) from e


# =============================================================================
# Request Models
# =============================================================================


class FileUpdateRequest(BaseModel):
    """Request body for a file update.

    Attributes:
        content: New file content (text).
        fingerprint: Fingerprint the editor last read for this file.
    """

    content: str
    fingerprint: str | None = None


class HttpsRequest(BaseModel):
    """Request body for the HTTPS endpoint.

    Attributes:
        subdomain: Site subdomain.
        action: "check" to read status, "enable" to enforce HTTPS.
    """

    subdomain: str = ""
    action: Literal["check", "enable"] = "enable"


# =============================================================================
# Application factory
# =============================================================================


def error_body(exc: SiteHostError) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "error": exc.message}
    if isinstance(exc, UpstreamError):
        body["technical"] = exc.detail or exc.message
        body["can_retry"] = True
    if isinstance(exc, PostCommitSyncError) and exc.fingerprint:
        body["fingerprint"] = exc.fingerprint
    return body


def create_app(services: Services | None = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        services: Pre-built services; built from the environment if omitted.
    """
    app = FastAPI(title="Sriox Sites", version="1.0.0")
    app.state.services = services or build_services()

    @app.exception_handler(SiteHostError)
    async def handle_site_host_error(request: Request, exc: SiteHostError) -> JSONResponse:
        if exc.status_code >= 500:
            _LOG.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(error_body(exc), status_code=exc.status_code)

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse({"success": False, "error": exc.detail}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return JSONResponse({"success": False, "error": f"Invalid request: {message}"}, status_code=400)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        _LOG.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse({"success": False, "error": str(exc) or "Internal error"}, status_code=500)

    # =========================================================================
    # Health Check
    # =========================================================================

    @app.get("/health")
    async def health(services: Services = Depends(get_services)) -> dict:
        """Health check endpoint for monitoring and load balancers."""
        return {
            "success": True,
            "status": "healthy",
            "auth_configured": services.authenticator.is_configured(),
        }

    # =========================================================================
    # Sites
    # =========================================================================

    @app.post("/api/sites")
    async def create_site(
        subdomain: str = Form(""),
        project_name: str | None = Form(None),
        description: str | None = Form(None),
        files: list[UploadFile] | None = File(None),
        owner_id: str = Depends(current_owner),
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        """Provision a site from uploaded files (must include index.html)."""
        uploads = [
            UploadedFile(
                filename=upload.filename or "",
                content=await upload.read(),
                media_type=upload.content_type or "text/plain",
            )
            for upload in files or []
        ]
        _LOG.info(
            "Create site request: subdomain=%s files=%s",
            subdomain, [upload.filename for upload in uploads],
        )
        result = await with_deadline(services, services.provisioning.provision(
            owner_id,
            subdomain.strip(),
            uploads,
            name=project_name or None,
            description=description or None,
        ))
        return JSONResponse({"success": True, **result.to_dict()})

    @app.get("/api/sites")
    async def list_sites(
        owner_id: str = Depends(current_owner),
        services: Services = Depends(get_services),
    ) -> dict:
        """List the caller's sites, newest first."""
        sites = services.registry.list_sites(owner_id)
        return {"success": True, "sites": [site.to_dict() for site in sites]}

    @app.delete("/api/sites/{site_id}")
    async def delete_site(
        site_id: str,
        owner_id: str = Depends(current_owner),
        services: Services = Depends(get_services),
    ) -> dict:
        """Delete a site; external cleanup failures come back as warnings."""
        result = await with_deadline(services, services.provisioning.deprovision(owner_id, site_id))
        return {"success": True, **result.to_dict()}

    # =========================================================================
    # Files
    # =========================================================================

    @app.get("/api/sites/{site_id}/files")
    async def list_files(
        site_id: str,
        owner_id: str = Depends(current_owner),
        services: Services = Depends(get_services),
    ) -> dict:
        """List a site's files with their current content."""
        files = await services.editing.list_files(owner_id, site_id)
        return {"success": True, "files": [view.to_dict() for view in files]}

    @app.get("/api/sites/{site_id}/files/{file_id}")
    async def get_file(
        site_id: str,
        file_id: str,
        owner_id: str = Depends(current_owner),
        services: Services = Depends(get_services),
    ) -> dict:
        """Get one file with its current content and fingerprint."""
        view = await services.editing.get_file(owner_id, site_id, file_id)
        return {"success": True, "file": view.to_dict()}

    @app.put("/api/sites/{site_id}/files/{file_id}")
    async def update_file(
        site_id: str,
        file_id: str,
        body: FileUpdateRequest,
        owner_id: str = Depends(current_owner),
        services: Services = Depends(get_services),
    ) -> dict:
        """Replace a file's content; 409 if it changed since the quoted fingerprint."""
        result = await with_deadline(services, services.editing.update_file(
            owner_id, site_id, file_id, body.content, body.fingerprint or ""
        ))
        return {"success": True, **result.to_dict()}

    # =========================================================================
    # HTTPS
    # =========================================================================

    @app.post("/api/https")
    async def https(
        body: HttpsRequest,
        owner_id: str = Depends(current_owner),
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        """Check HTTPS availability or enforce HTTPS for a site."""
        if not body.subdomain:
            raise ValidationError("Missing subdomain")

        try:
            if body.action == "check":
                status = await services.publishing.check(owner_id, body.subdomain)
                return JSONResponse({"success": True, **status.to_dict()})
            result = await services.publishing.enable(owner_id, body.subdomain)
            return JSONResponse({"success": True, **result.to_dict()})
        except UpstreamError as e:
            _LOG.warning("HTTPS %s for %s failed: %s", body.action, body.subdomain, e.message)
            return JSONResponse(
                {
                    "success": False,
                    "error": friendly_message(e.message),
                    "can_retry": True,
                    "technical": e.detail or e.message,
                },
                status_code=400,
            )

    return app
