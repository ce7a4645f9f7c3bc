"""Name resolution adapter: Cloudflare CNAME records for site subdomains.

Each site gets ``<subdomain>.<base domain> CNAME <username>.github.io``.
Record lookups go by fully qualified name, so callers never handle
Cloudflare record IDs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from .config import Settings
from .errors import UpstreamError

_LOG = logging.getLogger(__name__)

AUTO_TTL: int = 1
"""Cloudflare's sentinel for automatic TTL."""

LIST_PAGE_SIZE: int = 100


@dataclass
class DnsRecord:
    """A CNAME record as stored by Cloudflare."""

    id: str
    name: str
    target: str


def clean_target(target: str) -> str:
    """Reduce a URL or host to the bare host name a CNAME must point at.

    >>> clean_target("https://octo.github.io/sriox-demo")
    'octo.github.io'
    """
    host = target.replace("https://", "").replace("http://", "")
    return host.split("/")[0]


def upstream_message(response: httpx.Response) -> str:
    """Extract the first error message from a Cloudflare error envelope."""
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    errors = data.get("errors") if isinstance(data, dict) else None
    if errors and isinstance(errors, list) and errors[0].get("message"):
        return str(errors[0]["message"])
    return response.text or response.reason_phrase


class CloudflareDns:
    """Cloudflare DNS records API client scoped to one zone.

    Attributes:
        zone_id: Zone holding the site records.
        base_domain: Parent domain; record names are <label>.<base_domain>.
    """

    service = "cloudflare"

    def __init__(
        self,
        token: str,
        zone_id: str,
        base_domain: str,
        api_url: str = "https://api.cloudflare.com/client/v4",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.zone_id = zone_id
        self.base_domain = base_domain
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._token = token
        self._transport = transport

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> CloudflareDns:
        return cls(
            token=settings.cloudflare_token,
            zone_id=settings.cloudflare_zone_id,
            base_domain=settings.base_domain,
            api_url=settings.cloudflare_api_url,
            timeout=settings.upstream_timeout,
            transport=transport,
        )

    def fqdn(self, name: str) -> str:
        """Fully qualified record name for a subdomain label."""
        return f"{name}.{self.base_domain}"

    async def _request(
        self,
        method: str,
        path: str,
        json: dict | None = None,
        params: dict | None = None,
    ) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(
                base_url=self.api_url, timeout=self.timeout, transport=self._transport
            ) as client:
                return await client.request(
                    method,
                    f"/zones/{self.zone_id}/dns_records{path}",
                    json=json,
                    params=params,
                    headers=headers,
                )
        except httpx.RequestError as e:
            raise UpstreamError(
                f"Failed to connect to Cloudflare: {e}", service=self.service
            ) from e

    def _error(self, response: httpx.Response, action: str) -> UpstreamError:
        message = upstream_message(response)
        _LOG.error("Cloudflare %s failed (%s): %s", action, response.status_code, message)
        return UpstreamError(
            f"Failed to {action}: {message}",
            service=self.service,
            upstream_status=response.status_code,
            detail=message,
        )

    async def find_record(self, name: str) -> DnsRecord | None:
        """Look up the record for a subdomain label, or None if absent."""
        response = await self._request("GET", "", params={"name": self.fqdn(name)})
        if not response.is_success:
            raise self._error(response, "find DNS record")

        results = response.json().get("result") or []
        if not results:
            return None
        record = results[0]
        return DnsRecord(id=record["id"], name=record["name"], target=record.get("content", ""))

    async def list_records(self) -> list[DnsRecord]:
        """Every CNAME record under the base domain, following pagination."""
        suffix = f".{self.base_domain}"
        records: list[DnsRecord] = []
        page = 1
        while True:
            response = await self._request(
                "GET", "", params={"type": "CNAME", "per_page": LIST_PAGE_SIZE, "page": page}
            )
            if not response.is_success:
                raise self._error(response, "list DNS records")
            data = response.json()
            records.extend(
                DnsRecord(id=record["id"], name=record["name"], target=record.get("content", ""))
                for record in data.get("result") or []
                if record["name"].endswith(suffix)
            )
            total_pages = (data.get("result_info") or {}).get("total_pages") or 1
            if page >= total_pages:
                return records
            page += 1

    async def create_record(self, name: str, target: str) -> DnsRecord:
        """Create ``<name>.<base domain> CNAME <target host>``.

        Raises:
            UpstreamError: Cloudflare rejected the record (e.g. it already exists).
        """
        host = clean_target(target)
        _LOG.info("Creating CNAME record: %s -> %s", self.fqdn(name), host)
        response = await self._request("POST", "", json={
            "type": "CNAME",
            "name": self.fqdn(name),
            "content": host,
            "ttl": AUTO_TTL,
        })
        if not response.is_success:
            raise self._error(response, "configure subdomain")

        record = response.json().get("result") or {}
        return DnsRecord(id=record.get("id", ""), name=self.fqdn(name), target=host)

    async def update_record(self, name: str, target: str) -> DnsRecord:
        """Point an existing record at a new target, creating it if missing."""
        existing = await self.find_record(name)
        if existing is None:
            return await self.create_record(name, target)

        host = clean_target(target)
        response = await self._request("PUT", f"/{existing.id}", json={
            "type": "CNAME",
            "name": self.fqdn(name),
            "content": host,
            "ttl": AUTO_TTL,
        })
        if not response.is_success:
            raise self._error(response, "update DNS record")

        _LOG.info("Updated CNAME record: %s -> %s", self.fqdn(name), host)
        return DnsRecord(id=existing.id, name=self.fqdn(name), target=host)

    async def delete_record(self, name: str) -> bool:
        """Delete the record for a subdomain label.

        Returns:
            True if deleted, False if no record existed.
        """
        existing = await self.find_record(name)
        if existing is None:
            _LOG.warning("DNS record %s not found, might already be deleted", self.fqdn(name))
            return False

        response = await self._request("DELETE", f"/{existing.id}")
        if not response.is_success:
            raise self._error(response, "delete DNS record")
        _LOG.info("Deleted DNS record %s", self.fqdn(name))
        return True
