"""HTTPS status projection and enablement for published sites.

Pure reads of the content host's Pages state; nothing is cached because the
build and certificate state changes quickly right after provisioning.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from .config import Settings
from .content_host import GitHubPages
from .errors import NotFound, UpstreamError
from .registry import Registry, Site

_LOG = logging.getLogger(__name__)

BUILT: str = "built"
"""Pages status once the site has finished building."""


def friendly_message(raw: str) -> str:
    """Translate a raw upstream failure into actionable guidance."""
    lowered = raw.lower()
    if "certificate" in lowered or "ssl" in lowered:
        return (
            "SSL certificate is not ready yet. This usually takes 10-15 minutes "
            "after creating the site. Please try again later."
        )
    if "domain" in lowered:
        return "Domain verification is in progress. Please wait a few minutes and try again."
    if "not ready" in lowered:
        return "Your site is still being built. Please wait a few minutes and try again."
    return raw


@dataclass
class HttpsStatus:
    """Derived HTTPS availability for a site.

    Attributes:
        status: Raw Pages build status.
        enforced: HTTPS already enforced.
        ready: Build finished.
        can_enable: Ready and not yet enforced.
        custom_domain: Domain configured on the Pages site.
        message: Human-readable summary.
    """

    status: str | None
    enforced: bool
    ready: bool
    can_enable: bool
    custom_domain: str | None
    message: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class HttpsEnableResult:
    message: str
    status: str | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class PublishingService:
    """Checks and enables HTTPS on an owner's sites."""

    def __init__(self, registry: Registry, content_host: GitHubPages, settings: Settings) -> None:
        self.registry = registry
        self.content_host = content_host
        self.settings = settings

    def _owned_site(self, owner_id: str, subdomain: str) -> Site:
        site = self.registry.get_site_by_subdomain(owner_id, subdomain)
        if site is None:
            raise NotFound("Site not found")
        return site

    async def check(self, owner_id: str, subdomain: str) -> HttpsStatus:
        """Project the current Pages state into ready / can_enable / enforced."""
        site = self._owned_site(owner_id, subdomain)
        pages = await self.content_host.get_publish_status(site.repo_name)

        ready = pages.status == BUILT
        enforced = pages.https_enforced
        if not ready:
            message = f"Site is building ({pages.status}). Please wait a few minutes."
        elif enforced:
            message = "HTTPS is already enabled"
        else:
            message = "Ready to enable HTTPS"

        return HttpsStatus(
            status=pages.status,
            enforced=enforced,
            ready=ready,
            can_enable=ready and not enforced,
            custom_domain=pages.custom_domain,
            message=message,
        )

    async def enable(self, owner_id: str, subdomain: str) -> HttpsEnableResult:
        """Enforce HTTPS once the site is built.

        Raises:
            NotFound: No such site for this owner.
            UpstreamError: Not built yet, or GitHub refused (certificate pending).
        """
        site = self._owned_site(owner_id, subdomain)
        pages = await self.content_host.get_publish_status(site.repo_name)
        _LOG.info(
            "HTTPS check for %s: status=%s enforced=%s", subdomain, pages.status, pages.https_enforced
        )

        if pages.https_enforced:
            return HttpsEnableResult(message="HTTPS is already enabled", status=pages.status)

        if pages.status != BUILT:
            raise UpstreamError(
                f"Site is not ready yet. Current status: {pages.status}. "
                "Please wait a few minutes and try again.",
                service=self.content_host.service,
            )

        await self.content_host.set_publish_config(
            site.repo_name,
            self.settings.custom_domain(subdomain),
            enforce_https=True,
            source=pages.source,
        )
        _LOG.info("HTTPS enabled for %s", self.settings.custom_domain(subdomain))
        return HttpsEnableResult(message="HTTPS enabled successfully", status=pages.status)
