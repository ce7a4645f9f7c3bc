"""Content host adapter: GitHub repositories published through GitHub Pages.

Every site is one public repository named ``<prefix><subdomain>`` whose
``main`` branch root is served by Pages under the site's custom domain.
GitHub's blob sha for each file is the fingerprint used for optimistic
concurrency: a write must quote the sha it last read, and GitHub rejects it
with 409 if the file has changed since.

All upstream failures are normalized into the error taxonomy here, so callers
never see GitHub payload shapes:
    409 on a contents write  -> Conflict
    404 on a read            -> NotFound
    anything else non-2xx    -> UpstreamError (carrying GitHub's message)
    connection errors        -> UpstreamError
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from urllib.parse import quote

import httpx

from .config import Settings
from .errors import Conflict, NotFound, SiteHostError, UpstreamError

_LOG = logging.getLogger(__name__)

GITHUB_ACCEPT: str = "application/vnd.github.v3+json"
"""Media type requested from the GitHub REST API."""

PAGES_SOURCE: dict = {"branch": "main", "path": "/"}
"""Pages build source: root of the main branch."""

LIST_PAGE_SIZE: int = 100


@dataclass
class Repository:
    """A content repository created for a site.

    Attributes:
        name: Repository name (without owner).
        url: Browser URL of the repository.
        pages_url: Address GitHub Pages publishes the repository at.
    """

    name: str
    url: str
    pages_url: str


@dataclass
class FileContent:
    """Current content of a repository file and its fingerprint."""

    content: bytes
    fingerprint: str


@dataclass
class PublishStatus:
    """Pages build state for a repository.

    Attributes:
        status: Build status reported by GitHub ("built", "building", "errored", None).
        https_enforced: Whether HTTPS is enforced on the custom domain.
        custom_domain: Configured custom domain (cname), if any.
        url: Public URL reported by GitHub.
        source: Build source as reported by GitHub.
    """

    status: str | None
    https_enforced: bool
    custom_domain: str | None
    url: str | None
    source: dict | None = None


def upstream_message(response: httpx.Response) -> str:
    """Extract the most useful error message from a GitHub error response."""
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.text or response.reason_phrase


class GitHubPages:
    """GitHub REST API client for site repositories and Pages configuration.

    Attributes:
        username: Account that owns every site repository.
        api_url: REST API base URL.
        timeout: Per-request timeout in seconds.
    """

    service = "github"

    def __init__(
        self,
        token: str,
        username: str,
        api_url: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            token: GitHub token with repo and pages scope.
            username: Repository owner.
            api_url: REST API base URL.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (tests inject a MockTransport).
        """
        self.username = username
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._token = token
        self._transport = transport

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> GitHubPages:
        return cls(
            token=settings.github_token,
            username=settings.github_username,
            api_url=settings.github_api_url,
            timeout=settings.upstream_timeout,
            transport=transport,
        )

    # =========================================================================
    # HTTP plumbing
    # =========================================================================

    async def _request(
        self, method: str, path: str, json: dict | None = None
    ) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Accept": GITHUB_ACCEPT,
        }
        try:
            async with httpx.AsyncClient(
                base_url=self.api_url, timeout=self.timeout, transport=self._transport
            ) as client:
                return await client.request(method, path, json=json, headers=headers)
        except httpx.RequestError as e:
            raise UpstreamError(
                f"Failed to connect to GitHub: {e}", service=self.service
            ) from e

    def _error(self, response: httpx.Response, action: str) -> SiteHostError:
        message = upstream_message(response)
        _LOG.error("GitHub %s failed (%s): %s", action, response.status_code, message)
        return UpstreamError(
            f"Failed to {action}: {message}",
            service=self.service,
            upstream_status=response.status_code,
            detail=message,
        )

    def _repo_path(self, repo: str) -> str:
        return f"/repos/{self.username}/{repo}"

    def pages_url(self, repo: str) -> str:
        """Address GitHub Pages serves a repository at before DNS is wired."""
        return f"https://{self.username.lower()}.github.io/{repo}"

    # =========================================================================
    # Repositories
    # =========================================================================

    async def create_repo(self, name: str, description: str = "") -> Repository:
        """Create a public repository for a site.

        Raises:
            UpstreamError: GitHub rejected the creation (name taken, quota, auth).
        """
        response = await self._request("POST", "/user/repos", json={
            "name": name,
            "description": description,
            "private": False,
            "auto_init": False,
            "has_issues": False,
            "has_projects": False,
            "has_wiki": False,
        })
        if not response.is_success:
            raise self._error(response, "create repository")

        data = response.json()
        _LOG.info("Created repository %s", name)
        return Repository(
            name=name,
            url=data.get("html_url") or f"https://github.com/{self.username}/{name}",
            pages_url=self.pages_url(name),
        )

    async def list_repos(self, prefix: str = "") -> list[str]:
        """Names of the account's own repositories starting with ``prefix``."""
        names: list[str] = []
        page = 1
        while True:
            response = await self._request(
                "GET", f"/user/repos?type=owner&per_page={LIST_PAGE_SIZE}&page={page}"
            )
            if not response.is_success:
                raise self._error(response, "list repositories")
            batch = response.json()
            names.extend(repo["name"] for repo in batch if repo["name"].startswith(prefix))
            if len(batch) < LIST_PAGE_SIZE:
                return names
            page += 1

    async def delete_repo(self, name: str) -> bool:
        """Delete a repository.

        Returns:
            True if deleted, False if it was already gone.
        """
        response = await self._request("DELETE", self._repo_path(name))
        if response.status_code == 404:
            _LOG.warning("Repository %s not found, might already be deleted", name)
            return False
        if not response.is_success:
            raise self._error(response, "delete repository")
        _LOG.info("Deleted repository %s", name)
        return True

    # =========================================================================
    # Contents
    # =========================================================================

    async def put_file(
        self,
        repo: str,
        path: str,
        content: bytes,
        expected_fingerprint: str | None = None,
        message: str | None = None,
    ) -> str:
        """Create or update one file and return its new fingerprint.

        Args:
            repo: Repository name.
            path: File path inside the repository.
            content: Raw file bytes.
            expected_fingerprint: Sha the caller last read. Required by GitHub
                when the file already exists; a mismatch is rejected.
            message: Commit message.

        Raises:
            Conflict: The file changed since ``expected_fingerprint`` was read.
            UpstreamError: Any other rejection.
        """
        body: dict = {
            "message": message or f"{'Update' if expected_fingerprint else 'Add'} {path}",
            "content": base64.b64encode(content).decode("ascii"),
        }
        if expected_fingerprint:
            body["sha"] = expected_fingerprint

        response = await self._request(
            "PUT", f"{self._repo_path(repo)}/contents/{quote(path)}", json=body
        )
        if response.status_code == 409:
            raise Conflict(
                "Content changed since last read, reload and retry",
                detail=upstream_message(response),
            )
        if not response.is_success:
            raise self._error(response, f"write {path}")

        fingerprint = response.json()["content"]["sha"]
        _LOG.info("Wrote %s/%s (sha %s)", repo, path, fingerprint[:8])
        return fingerprint

    async def get_file(self, repo: str, path: str) -> FileContent:
        """Read one file's content and current fingerprint.

        Raises:
            NotFound: The file does not exist.
            UpstreamError: Any other failure.
        """
        response = await self._request("GET", f"{self._repo_path(repo)}/contents/{quote(path)}")
        if response.status_code == 404:
            raise NotFound(f"File {path} not found on content host")
        if not response.is_success:
            raise self._error(response, f"fetch {path}")

        data = response.json()
        return FileContent(
            content=base64.b64decode(data.get("content") or ""),
            fingerprint=data["sha"],
        )

    # =========================================================================
    # Pages
    # =========================================================================

    async def enable_pages(self, name: str) -> None:
        """Turn on Pages for a repository, building from main:/."""
        response = await self._request(
            "POST", f"{self._repo_path(name)}/pages", json={"source": PAGES_SOURCE}
        )
        if not response.is_success:
            raise self._error(response, "enable Pages")
        _LOG.info("Enabled Pages for %s", name)

    async def get_publish_status(self, name: str) -> PublishStatus:
        """Fetch the current Pages build and certificate state.

        Raises:
            NotFound: The repository has no Pages site.
        """
        response = await self._request("GET", f"{self._repo_path(name)}/pages")
        if response.status_code == 404:
            raise NotFound(f"Pages site for {name} not found")
        if not response.is_success:
            raise self._error(response, "get Pages configuration")

        data = response.json()
        return PublishStatus(
            status=data.get("status"),
            https_enforced=bool(data.get("https_enforced")),
            custom_domain=data.get("cname"),
            url=data.get("html_url"),
            source=data.get("source"),
        )

    async def set_publish_config(
        self,
        name: str,
        custom_domain: str,
        enforce_https: bool,
        source: dict | None = None,
    ) -> None:
        """Set the custom domain and HTTPS enforcement for a Pages site."""
        response = await self._request("PUT", f"{self._repo_path(name)}/pages", json={
            "cname": custom_domain,
            "https_enforced": enforce_https,
            "source": source or PAGES_SOURCE,
        })
        if not response.is_success:
            raise self._error(
                response, "enable HTTPS" if enforce_https else "configure custom domain"
            )
        _LOG.info(
            "Configured Pages for %s: domain=%s https_enforced=%s",
            name, custom_domain, enforce_https,
        )
