"""Drift audit between the registry and the external systems.

Teardown tolerates external failures, a timed-out request can be cut short,
and edits can leave the registry behind the content host, so registry and
upstream state may diverge. The audit runs in two directions:

    audit_sites    every registry site: Pages site present, CNAME present
                   and pointing at the Pages host
    find_orphans   every prefixed repository and every CNAME at the Pages
                   host with no registry row behind it

With ``repair`` drifted records are re-pointed and orphans are deleted.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from .config import Settings
from .content_host import GitHubPages
from .dns import CloudflareDns
from .errors import NotFound, SiteHostError
from .registry import Registry, Site

_LOG = logging.getLogger(__name__)


@dataclass
class DriftReport:
    """Problems found for one site.

    Attributes:
        site_id: Registry id.
        subdomain: Site subdomain.
        problems: Human-readable problem descriptions (empty when healthy).
        repaired: Problems fixed during this run.
    """

    site_id: str
    subdomain: str
    problems: list[str] = field(default_factory=list)
    repaired: list[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not self.problems

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["healthy"] = self.healthy
        return data


async def audit_site(
    site: Site,
    content_host: GitHubPages,
    dns: CloudflareDns,
    settings: Settings,
    repair: bool = False,
) -> DriftReport:
    report = DriftReport(site_id=site.id, subdomain=site.subdomain)

    try:
        await content_host.get_publish_status(site.repo_name)
    except NotFound:
        report.problems.append(f"repository {site.repo_name} has no Pages site")
    except SiteHostError as e:
        report.problems.append(f"repository check failed: {e.message}")

    expected_target = settings.pages_host()
    try:
        record = await dns.find_record(site.subdomain)
    except SiteHostError as e:
        report.problems.append(f"DNS check failed: {e.message}")
        return report

    if record is None:
        problem = f"DNS record {dns.fqdn(site.subdomain)} is missing"
    elif record.target.lower() != expected_target:
        problem = f"DNS record points at {record.target}, expected {expected_target}"
    else:
        return report

    if repair:
        try:
            await dns.update_record(site.subdomain, expected_target)
            report.repaired.append(problem)
            return report
        except SiteHostError as e:
            _LOG.warning("DNS repair for %s failed: %s", site.subdomain, e)
    report.problems.append(problem)
    return report


async def audit_sites(
    registry: Registry,
    content_host: GitHubPages,
    dns: CloudflareDns,
    settings: Settings,
    repair: bool = False,
) -> list[DriftReport]:
    """Audit every site in the registry, one at a time."""
    reports = []
    for site in registry.all_sites():
        report = await audit_site(site, content_host, dns, settings, repair=repair)
        if not report.healthy:
            _LOG.warning("Drift on %s: %s", site.subdomain, "; ".join(report.problems))
        reports.append(report)
    return reports


@dataclass
class Orphan:
    """An external resource no registry site accounts for.

    Attributes:
        kind: "repository" or "dns".
        name: Repository name, or the record's subdomain label.
        removed: Deleted during this run.
    """

    kind: str
    name: str
    removed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


async def find_orphans(
    registry: Registry,
    content_host: GitHubPages,
    dns: CloudflareDns,
    settings: Settings,
    repair: bool = False,
) -> list[Orphan]:
    """List prefixed repositories and Pages CNAMEs that have no registry row.

    Only records pointing at the Pages host are considered, so unrelated
    records in the zone are never touched.
    """
    sites = registry.all_sites()
    known_repos = {site.repo_name for site in sites}
    known_labels = {site.subdomain for site in sites}
    suffix = f".{settings.base_domain}"
    pages_host = settings.pages_host()

    orphans = [
        Orphan(kind="repository", name=name)
        for name in await content_host.list_repos(settings.repo_prefix)
        if name not in known_repos
    ]
    for record in await dns.list_records():
        label = record.name[: -len(suffix)]
        if label not in known_labels and record.target.lower() == pages_host:
            orphans.append(Orphan(kind="dns", name=label))

    for orphan in orphans:
        _LOG.warning("Orphaned %s: %s", orphan.kind, orphan.name)
        if not repair:
            continue
        try:
            if orphan.kind == "repository":
                await content_host.delete_repo(orphan.name)
            else:
                await dns.delete_record(orphan.name)
            orphan.removed = True
        except SiteHostError as e:
            _LOG.warning("Removing orphaned %s %s failed: %s", orphan.kind, orphan.name, e)
    return orphans
