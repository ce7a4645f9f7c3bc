"""Edit orchestrator: read and rewrite site files in place.

Writes use the content host's fingerprint as an optimistic concurrency token.
The caller quotes the fingerprint it last read; if the file changed since,
the host rejects the write and the caller gets Conflict and must reload.
Nothing is retried automatically.

After the host accepts a write the registry must record the new fingerprint.
If that fails the two systems have diverged, which is reported as
PostCommitSyncError rather than swallowed.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import asdict, dataclass
from typing import Any

from .content_host import GitHubPages
from .errors import Forbidden, NotFound, PostCommitSyncError, RegistryError, SiteHostError, ValidationError
from .registry import Registry, Site, SiteFile

_LOG = logging.getLogger(__name__)

TEXT_MEDIA_TYPES: frozenset[str] = frozenset({
    "text/html",
    "text/css",
    "text/javascript",
    "application/javascript",
    "text/plain",
    "application/json",
    "text/xml",
    "application/xml",
    "image/svg+xml",
})
"""Media types the browser editor can display and edit."""

TEXT_EXTENSION_PATTERN: re.Pattern = re.compile(r"\.(html?|css|js|json|txt|md|xml|svg)$", re.IGNORECASE)
"""Fallback: file extensions treated as editable text."""

BINARY_PLACEHOLDER: str = "Binary file content not editable in browser."


def is_text_file(site_file: SiteFile) -> bool:
    """Whether a file's content should be fetched for the editor."""
    return site_file.file_type in TEXT_MEDIA_TYPES or bool(
        TEXT_EXTENSION_PATTERN.search(site_file.filename)
    )


@dataclass
class EditResult:
    """Outcome of an accepted file update."""

    file_id: str
    fingerprint: str
    size_bytes: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class FileView:
    """File metadata plus its current content for the editor."""

    id: str
    filename: str
    file_type: str
    size_bytes: int
    fingerprint: str | None
    updated_at: str
    content: str
    editable: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class EditOrchestrator:
    """Applies single-file edits through the content host.

    Attributes:
        registry: Site/file metadata store.
        content_host: Repository adapter holding the file contents.
    """

    def __init__(self, registry: Registry, content_host: GitHubPages) -> None:
        self.registry = registry
        self.content_host = content_host

    def _owned_file(self, owner_id: str, site_id: str, file_id: str) -> tuple[SiteFile, Site]:
        found = self.registry.find_file(site_id, file_id)
        if found is None:
            raise NotFound("File not found")
        site_file, site = found
        if site.owner_id != owner_id:
            raise Forbidden("Unauthorized access")
        return site_file, site

    async def update_file(
        self,
        owner_id: str,
        site_id: str,
        file_id: str,
        new_content: str,
        expected_fingerprint: str,
    ) -> EditResult:
        """Replace one file's content.

        Raises:
            ValidationError: Missing fingerprint, or the file is binary.
            NotFound: No such file in this site.
            Forbidden: The site belongs to someone else.
            Conflict: The content host holds a different fingerprint.
            UpstreamError: The content host failed.
            PostCommitSyncError: The host accepted the write but the registry
                could not record the new fingerprint.
        """
        if not expected_fingerprint:
            raise ValidationError("Missing current fingerprint")

        site_file, site = self._owned_file(owner_id, site_id, file_id)
        if not is_text_file(site_file):
            raise ValidationError(f"{site_file.filename} is a binary file and cannot be edited in the browser")
        payload = new_content.encode("utf-8")

        new_fingerprint = await self.content_host.put_file(
            site.repo_name,
            site_file.filename,
            payload,
            expected_fingerprint=expected_fingerprint,
            message=f"Update {site_file.filename} for {site.subdomain} site",
        )

        try:
            updated = self.registry.update_file_fingerprint(
                owner_id, site_id, file_id, new_fingerprint, len(payload)
            )
        except RegistryError as e:
            _LOG.error(
                "Registry out of sync for %s/%s (host sha %s): %s",
                site.subdomain, site_file.filename, new_fingerprint, e, exc_info=True,
            )
            raise PostCommitSyncError(
                f"File saved but its fingerprint could not be recorded: {e.message}",
                fingerprint=new_fingerprint,
                detail=e.detail,
            ) from e

        if not updated:
            _LOG.error(
                "Registry row vanished for %s/%s after host write (sha %s)",
                site.subdomain, site_file.filename, new_fingerprint,
            )
            raise PostCommitSyncError(
                "File saved but its registry entry no longer exists",
                fingerprint=new_fingerprint,
            )

        _LOG.info("Updated %s/%s -> %s", site.subdomain, site_file.filename, new_fingerprint[:8])
        return EditResult(file_id=file_id, fingerprint=new_fingerprint, size_bytes=len(payload))

    async def _view(self, site: Site, site_file: SiteFile, tolerate_errors: bool) -> FileView:
        editable = is_text_file(site_file)
        content = ""
        if not editable:
            content = BINARY_PLACEHOLDER
        elif site_file.fingerprint:
            try:
                fetched = await self.content_host.get_file(site.repo_name, site_file.filename)
                content = fetched.content.decode("utf-8", errors="replace")
            except SiteHostError as e:
                if not tolerate_errors:
                    raise
                _LOG.warning("Could not fetch content for %s: %s", site_file.filename, e)
                content = f"Error fetching content: {e.message}"

        return FileView(
            id=site_file.id,
            filename=site_file.filename,
            file_type=site_file.file_type,
            size_bytes=site_file.size_bytes,
            fingerprint=site_file.fingerprint,
            updated_at=site_file.updated_at,
            content=content,
            editable=editable,
        )

    async def get_file(self, owner_id: str, site_id: str, file_id: str) -> FileView:
        """Fetch one file's metadata and content.

        Raises:
            NotFound / Forbidden: As for ``update_file``.
            UpstreamError: The content could not be fetched.
        """
        site_file, site = self._owned_file(owner_id, site_id, file_id)
        return await self._view(site, site_file, tolerate_errors=False)

    async def list_files(self, owner_id: str, site_id: str) -> list[FileView]:
        """Fetch every file of a site with content; per-file fetch errors are inlined.

        Raises:
            NotFound: No such site for this owner.
        """
        site = self.registry.get_site(owner_id, site_id)
        if site is None:
            raise NotFound("Project not found")

        files = self.registry.list_files(owner_id, site_id)
        return list(await asyncio.gather(
            *(self._view(site, site_file, tolerate_errors=True) for site_file in files)
        ))
