"""Shared fixtures and in-memory test doubles for the external systems."""

import hashlib
from pathlib import Path

import pytest

from sriox.config import Settings
from sriox.content_host import FileContent, PublishStatus, Repository
from sriox.dns import DnsRecord, clean_target
from sriox.editing import EditOrchestrator
from sriox.errors import Conflict, NotFound, UpstreamError
from sriox.provisioning import ProvisioningOrchestrator, UploadedFile
from sriox.publishing import PublishingService
from sriox.registry import Registry


class FakeContentHost:
    """In-memory stand-in for GitHubPages.

    ``fail_on`` maps a method name to an exception raised on every call;
    ``fail_files`` maps a file path to an exception raised when writing it.
    """

    service = "github"

    def __init__(self, username: str = "octo") -> None:
        self.username = username
        self.repos: dict[str, dict[str, FileContent]] = {}
        self.pages: dict[str, PublishStatus] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_on: dict[str, Exception] = {}
        self.fail_files: dict[str, Exception] = {}
        self._counter = 0

    def _check(self, method: str, target: str) -> None:
        self.calls.append((method, target))
        if method in self.fail_on:
            raise self.fail_on[method]

    def _sha(self, content: bytes) -> str:
        self._counter += 1
        return hashlib.sha1(content + str(self._counter).encode()).hexdigest()

    def pages_url(self, repo: str) -> str:
        return f"https://{self.username}.github.io/{repo}"

    async def create_repo(self, name: str, description: str = "") -> Repository:
        self._check("create_repo", name)
        if name in self.repos:
            raise UpstreamError("Failed to create repository: name already exists", service="github")
        self.repos[name] = {}
        return Repository(name=name, url=f"https://github.com/{self.username}/{name}", pages_url=self.pages_url(name))

    async def list_repos(self, prefix: str = "") -> list[str]:
        self._check("list_repos", prefix)
        return [name for name in self.repos if name.startswith(prefix)]

    async def delete_repo(self, name: str) -> bool:
        self._check("delete_repo", name)
        self.pages.pop(name, None)
        return self.repos.pop(name, None) is not None

    async def put_file(self, repo, path, content, expected_fingerprint=None, message=None) -> str:
        self._check("put_file", f"{repo}/{path}")
        if path in self.fail_files:
            raise self.fail_files[path]
        files = self.repos[repo]
        current = files.get(path)
        if current is not None and current.fingerprint != expected_fingerprint:
            raise Conflict("Content changed since last read, reload and retry")
        sha = self._sha(content)
        files[path] = FileContent(content=content, fingerprint=sha)
        return sha

    async def get_file(self, repo, path) -> FileContent:
        self._check("get_file", f"{repo}/{path}")
        try:
            return self.repos[repo][path]
        except KeyError:
            raise NotFound(f"File {path} not found on content host") from None

    async def enable_pages(self, name) -> None:
        self._check("enable_pages", name)
        self.pages[name] = PublishStatus(status="building", https_enforced=False, custom_domain=None, url=None)

    async def get_publish_status(self, name) -> PublishStatus:
        self._check("get_publish_status", name)
        if name not in self.pages:
            raise NotFound(f"Pages site for {name} not found")
        return self.pages[name]

    async def set_publish_config(self, name, custom_domain, enforce_https, source=None) -> None:
        self._check("set_publish_config", name)
        current = self.pages.get(name) or PublishStatus(
            status="building", https_enforced=False, custom_domain=None, url=None
        )
        current.custom_domain = custom_domain
        current.https_enforced = enforce_https
        self.pages[name] = current


class FakeDns:
    """In-memory stand-in for CloudflareDns."""

    service = "cloudflare"

    def __init__(self, base_domain: str = "sriox.test") -> None:
        self.base_domain = base_domain
        self.records: dict[str, DnsRecord] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_on: dict[str, Exception] = {}

    def _check(self, method: str, name: str) -> None:
        self.calls.append((method, name))
        if method in self.fail_on:
            raise self.fail_on[method]

    def fqdn(self, name: str) -> str:
        return f"{name}.{self.base_domain}"

    async def find_record(self, name):
        self._check("find_record", name)
        return self.records.get(name)

    async def list_records(self):
        self._check("list_records", self.base_domain)
        return list(self.records.values())

    async def create_record(self, name, target):
        self._check("create_record", name)
        record = DnsRecord(id=f"rec-{name}", name=self.fqdn(name), target=clean_target(target))
        self.records[name] = record
        return record

    async def update_record(self, name, target):
        self._check("update_record", name)
        record = DnsRecord(id=f"rec-{name}", name=self.fqdn(name), target=clean_target(target))
        self.records[name] = record
        return record

    async def delete_record(self, name):
        self._check("delete_record", name)
        return self.records.pop(name, None) is not None


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "sriox.db",
        github_username="octo",
        base_domain="sriox.test",
        repo_prefix="sriox-",
        session_secret="test-secret",
        pages_settle_delay=0,
        saga_timeout=5,
    )


@pytest.fixture
def registry(settings):
    reg = Registry(settings.db_path)
    yield reg
    reg.close()


@pytest.fixture
def content_host():
    return FakeContentHost()


@pytest.fixture
def dns():
    return FakeDns()


@pytest.fixture
def provisioning(registry, content_host, dns, settings):
    return ProvisioningOrchestrator(registry, content_host, dns, settings)


@pytest.fixture
def editing(registry, content_host):
    return EditOrchestrator(registry, content_host)


@pytest.fixture
def publishing(registry, content_host, settings):
    return PublishingService(registry, content_host, settings)


@pytest.fixture
def demo_files():
    return [
        UploadedFile("index.html", b"<h1>Hello</h1>", "text/html"),
        UploadedFile("style.css", b"h1 { color: red; }", "text/css"),
    ]
