"""Provisioning orchestrator: bring a site into existence or tear it down.

Creating a site touches three independent systems, in dependency order:

    1. registry       uniqueness check (no external calls before this)
    2. content host   create repository, upload files, enable Pages
    3. DNS            CNAME <subdomain>.<base domain> -> Pages host
    4. registry       site row, then file rows

Steps 2-4 run as a saga. A repository or DNS record that was created is
deleted again if a later step fails, and the original error is what the
caller sees. Teardown runs the two external deletions concurrently and
always removes the registry row afterwards; orphaned external resources are
logged and reported as warnings, and the ``audit`` command finds them later.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import asdict, dataclass, field
from pathlib import PurePosixPath
from typing import Any

from .config import Settings
from .content_host import GitHubPages, Repository
from .dns import CloudflareDns
from .errors import Conflict, NotFound, RegistryError, SiteHostError, UploadTooLarge, UpstreamError, ValidationError
from .registry import FileRecord, Registry, Site
from .saga import Saga, Step, settle_all

_LOG = logging.getLogger(__name__)

SUBDOMAIN_PATTERN: re.Pattern = re.compile(r"^[a-z0-9-]+$")
"""Allowed characters for a subdomain label."""

MAX_SUBDOMAIN_LENGTH: int = 63
"""DNS label length limit."""

RESERVED_SUBDOMAINS: frozenset[str] = frozenset(
    {"api", "www", "admin", "static", "assets", "health", "mail"}
)
"""Labels that can never be claimed by a site."""

RESERVED_FILENAMES: frozenset[str] = frozenset({"cname"})
"""Filenames the orchestrator writes itself (compared case-insensitively)."""


@dataclass
class UploadedFile:
    """One file submitted for a new site.

    Attributes:
        filename: Flat file name (no directories).
        content: Raw bytes.
        media_type: Content type reported by the client.
    """

    filename: str
    content: bytes
    media_type: str = "text/plain"

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class ProvisionResult:
    """Outcome of a successful provision.

    ``warnings`` lists non-fatal problems (skipped files, Pages configuration
    still pending, file metadata not saved).
    """

    site_id: str
    subdomain: str
    url: str
    pages_url: str
    repo_url: str
    custom_domain: str
    name: str
    file_count: int
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DeprovisionResult:
    site_id: str
    subdomain: str
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# =============================================================================
# Local validation
# =============================================================================


def validate_subdomain(subdomain: str) -> None:
    """Validate a requested subdomain label.

    Raises:
        ValidationError: Missing, malformed, too long, or reserved.
    """
    if not subdomain:
        raise ValidationError("Subdomain is required")

    if not SUBDOMAIN_PATTERN.match(subdomain):
        raise ValidationError(
            "Subdomain can only contain lowercase letters, numbers, and hyphens"
        )

    if len(subdomain) > MAX_SUBDOMAIN_LENGTH:
        raise ValidationError(f"Subdomain must be at most {MAX_SUBDOMAIN_LENGTH} characters")

    if subdomain.startswith("-") or subdomain.endswith("-"):
        raise ValidationError("Subdomain cannot start or end with a hyphen")

    if subdomain in RESERVED_SUBDOMAINS:
        raise ValidationError(f"Subdomain '{subdomain}' is reserved")


def is_entry_point(filename: str) -> bool:
    """True for the file a visitor gets by default (index.html, index.htm, ...)."""
    path = PurePosixPath(filename)
    return path.stem.lower() == "index" and bool(path.suffix)


def validate_files(files: list[UploadedFile], max_bytes: int) -> UploadedFile:
    """Validate an upload and return its entry point file.

    Raises:
        ValidationError: No files, bad or duplicate names, empty files, or not
            exactly one entry point.
        UploadTooLarge: Total size exceeds ``max_bytes``.
    """
    if not files:
        raise ValidationError("At least one file is required")

    seen: set[str] = set()
    total = 0
    for upload in files:
        name = upload.filename
        if not name or "/" in name or "\\" in name or name.startswith("."):
            raise ValidationError(f"Invalid file name: {name!r}")
        if name.lower() in RESERVED_FILENAMES:
            raise ValidationError(f"File name '{name}' is reserved")
        if name in seen:
            raise ValidationError(f"Duplicate file: {name}")
        if upload.size == 0:
            raise ValidationError(f"Invalid file: {name} is empty")
        seen.add(name)
        total += upload.size

    if total > max_bytes:
        raise UploadTooLarge(
            f"Upload too large. Maximum size is {max_bytes // (1024 * 1024)} MB"
        )

    entries = [upload for upload in files if is_entry_point(upload.filename)]
    if not entries:
        raise ValidationError("An index.html file is required")
    if len(entries) > 1:
        names = ", ".join(upload.filename for upload in entries)
        raise ValidationError(f"Exactly one index file is allowed, got: {names}")
    return entries[0]


# =============================================================================
# Orchestrator
# =============================================================================


class ProvisioningOrchestrator:
    """Sequences content host, DNS and registry calls for site lifecycles.

    Attributes:
        registry: Site/file metadata store.
        content_host: Repository + Pages adapter.
        dns: CNAME record adapter.
        settings: Naming, limits and upload policy.
    """

    def __init__(
        self,
        registry: Registry,
        content_host: GitHubPages,
        dns: CloudflareDns,
        settings: Settings,
    ) -> None:
        self.registry = registry
        self.content_host = content_host
        self.dns = dns
        self.settings = settings

    async def provision(
        self,
        owner_id: str,
        subdomain: str,
        files: list[UploadedFile],
        name: str | None = None,
        description: str | None = None,
    ) -> ProvisionResult:
        """Create a site end to end.

        Raises:
            ValidationError: Bad subdomain or file set (no external calls made).
            Conflict: Subdomain already taken (no external calls made).
            UpstreamError: Repository, entry file upload, or DNS failed; the
                external resources created so far have been rolled back.
            RegistryError: Site row could not be saved; both external
                resources have been rolled back.
        """
        validate_subdomain(subdomain)
        entry = validate_files(files, self.settings.max_upload_bytes)

        if self.registry.subdomain_taken(subdomain):
            raise Conflict("Subdomain already taken")

        repo_name = self.settings.repo_name(subdomain)
        custom_domain = self.settings.custom_domain(subdomain)
        display_name = name or subdomain
        warnings: list[str] = []
        saga = Saga(f"provision {subdomain}")

        _LOG.info(
            "Provisioning %s for owner %s (%d files)", custom_domain, owner_id, len(files)
        )

        repo: Repository = await saga.run(Step(
            "create_repository",
            action=lambda: self.content_host.create_repo(
                repo_name, description=f"Sriox site for {custom_domain}"
            ),
            compensate=lambda created: self.content_host.delete_repo(created.name),
        ))

        fingerprints: dict[str, str] = await saga.run(Step(
            "upload_files",
            action=lambda: self._upload_files(repo, files, entry, subdomain, custom_domain, warnings),
        ))

        await saga.run(Step(
            "publish",
            action=lambda: self._publish(repo, custom_domain, warnings),
        ))

        await saga.run(Step(
            "dns",
            action=lambda: self.dns.create_record(subdomain, repo.pages_url),
            compensate=lambda _record: self.dns.delete_record(subdomain),
        ))

        async def save_site() -> Site:
            return self.registry.create_site(
                owner_id=owner_id,
                subdomain=subdomain,
                name=display_name,
                description=description or None,
                repo_name=repo.name,
                repo_url=repo.url,
                pages_url=repo.pages_url,
            )

        site: Site = await saga.run(Step("registry", action=save_site))

        records = [
            FileRecord(
                filename=upload.filename,
                file_type=upload.media_type or "text/plain",
                size_bytes=upload.size,
                fingerprint=fingerprints[upload.filename],
            )
            for upload in files
            if upload.filename in fingerprints
        ]
        try:
            self.registry.add_files(site.id, records)
        except RegistryError as e:
            _LOG.error("File metadata save failed for %s: %s", subdomain, e, exc_info=True)
            warnings.append(
                f"Site created but file metadata could not be saved for editing: {e.message}"
            )

        _LOG.info("Provisioned %s as site %s", custom_domain, site.id)
        return ProvisionResult(
            site_id=site.id,
            subdomain=subdomain,
            url=f"https://{custom_domain}",
            pages_url=repo.pages_url,
            repo_url=repo.url,
            custom_domain=custom_domain,
            name=display_name,
            file_count=len(records),
            warnings=warnings,
        )

    async def _upload_files(
        self,
        repo: Repository,
        files: list[UploadedFile],
        entry: UploadedFile,
        subdomain: str,
        custom_domain: str,
        warnings: list[str],
    ) -> dict[str, str]:
        """Upload every file, returning filename -> fingerprint for the ones that landed.

        The entry point must land; other files may be skipped unless
        ``strict_uploads`` is set.
        """
        fingerprints: dict[str, str] = {}
        for upload in files:
            try:
                fingerprints[upload.filename] = await self.content_host.put_file(
                    repo.name,
                    upload.filename,
                    upload.content,
                    message=f"Add {upload.filename} for {subdomain} site",
                )
            except SiteHostError as e:
                if upload is entry or self.settings.strict_uploads:
                    raise UpstreamError(
                        f"Failed to upload {upload.filename}: {e.message}",
                        service=getattr(e, "service", "github"),
                        upstream_status=getattr(e, "upstream_status", None),
                        detail=e.detail,
                    ) from e
                _LOG.warning("Skipping %s for %s: %s", upload.filename, subdomain, e)
                warnings.append(f"Failed to upload {upload.filename}: {e.message}")

        try:
            await self.content_host.put_file(
                repo.name,
                "CNAME",
                custom_domain.encode(),
                message=f"Add CNAME for {custom_domain}",
            )
        except SiteHostError as e:
            _LOG.warning("CNAME file creation failed for %s: %s", repo.name, e)
            warnings.append(f"Custom domain file could not be written: {e.message}")

        return fingerprints

    async def _publish(self, repo: Repository, custom_domain: str, warnings: list[str]) -> None:
        """Enable Pages and attach the custom domain (HTTPS is enabled later).

        GitHub finishes this asynchronously, so failures are warnings only.
        """
        try:
            await self.content_host.enable_pages(repo.name)
        except SiteHostError as e:
            _LOG.warning("Pages enable for %s failed: %s", repo.name, e)
            warnings.append(f"GitHub Pages may take a few minutes to enable: {e.message}")

        if self.settings.pages_settle_delay > 0:
            await asyncio.sleep(self.settings.pages_settle_delay)

        try:
            await self.content_host.set_publish_config(
                repo.name, custom_domain, enforce_https=False
            )
        except SiteHostError as e:
            _LOG.warning("Custom domain configuration for %s failed: %s", repo.name, e)
            warnings.append(f"Custom domain configuration is still pending: {e.message}")

    async def deprovision(self, owner_id: str, site_id: str) -> DeprovisionResult:
        """Tear a site down.

        External deletions run concurrently and never abort the teardown; the
        registry row is removed regardless of their outcome.

        Raises:
            NotFound: No such site for this owner.
            RegistryError: The registry row could not be deleted.
        """
        site = self.registry.get_site(owner_id, site_id)
        if site is None:
            raise NotFound("Site not found")

        labels = {"repository": "GitHub repository", "dns": "DNS record"}
        outcomes = await settle_all({
            "repository": self.content_host.delete_repo(site.repo_name),
            "dns": self.dns.delete_record(site.subdomain),
        })

        warnings: list[str] = []
        for key, outcome in outcomes.items():
            if not outcome.ok:
                message = getattr(outcome.error, "message", str(outcome.error))
                _LOG.warning("Teardown of %s for %s failed: %s", key, site.subdomain, message)
                warnings.append(f"Failed to delete {labels[key]}: {message}")
            elif outcome.value is False:
                warnings.append(f"{labels[key]} was already removed")

        self.registry.delete_site(owner_id, site.id)
        _LOG.info("Deprovisioned site %s (%s)", site.id, site.subdomain)
        return DeprovisionResult(site_id=site.id, subdomain=site.subdomain, warnings=warnings)
