"""Tests for the GitHub content host adapter, using httpx.MockTransport."""

import base64
import json

import httpx
import pytest

from sriox.content_host import GitHubPages
from sriox.errors import Conflict, NotFound, UpstreamError


def make_host(handler) -> tuple[GitHubPages, list[httpx.Request]]:
    """Build an adapter whose requests are answered by ``handler`` and recorded."""
    seen: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    host = GitHubPages(
        token="gh-token",
        username="Octo",
        api_url="https://api.github.test",
        transport=httpx.MockTransport(record),
    )
    return host, seen


class TestRepositories:
    """Tests for repository create/delete."""

    @pytest.mark.asyncio
    async def test_create_repo(self):
        host, seen = make_host(lambda request: httpx.Response(
            201, json={"html_url": "https://github.com/Octo/sriox-demo"}
        ))

        repo = await host.create_repo("sriox-demo", description="demo")

        assert repo.url == "https://github.com/Octo/sriox-demo"
        assert repo.pages_url == "https://octo.github.io/sriox-demo"
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/user/repos"
        assert request.headers["Authorization"] == "Bearer gh-token"
        body = json.loads(request.content)
        assert body["name"] == "sriox-demo"
        assert body["private"] is False

    @pytest.mark.asyncio
    async def test_create_repo_failure_carries_github_message(self):
        host, _ = make_host(lambda request: httpx.Response(
            422, json={"message": "name already exists on this account"}
        ))

        with pytest.raises(UpstreamError) as exc_info:
            await host.create_repo("sriox-demo")

        assert "name already exists" in exc_info.value.message
        assert exc_info.value.service == "github"
        assert exc_info.value.upstream_status == 422

    @pytest.mark.asyncio
    async def test_delete_repo(self):
        host, seen = make_host(lambda request: httpx.Response(204))
        assert await host.delete_repo("sriox-demo") is True
        assert seen[0].method == "DELETE"
        assert seen[0].url.path == "/repos/Octo/sriox-demo"

    @pytest.mark.asyncio
    async def test_delete_missing_repo_returns_false(self):
        host, _ = make_host(lambda request: httpx.Response(404, json={"message": "Not Found"}))
        assert await host.delete_repo("sriox-gone") is False

    @pytest.mark.asyncio
    async def test_connection_error_is_upstream_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        host, _ = make_host(refuse)

        with pytest.raises(UpstreamError, match="Failed to connect to GitHub"):
            await host.delete_repo("sriox-demo")

    @pytest.mark.asyncio
    async def test_list_repos_follows_pages_and_filters_prefix(self):
        def handler(request):
            if request.url.params["page"] == "1":
                names = [f"sriox-site{i}" for i in range(99)] + ["personal-blog"]
            else:
                names = ["sriox-last"]
            return httpx.Response(200, json=[{"name": name} for name in names])

        host, seen = make_host(handler)

        names = await host.list_repos("sriox-")

        assert len(names) == 100
        assert names[-1] == "sriox-last"
        assert "personal-blog" not in names
        assert [request.url.params["page"] for request in seen] == ["1", "2"]


class TestContents:
    """Tests for file writes and reads."""

    @pytest.mark.asyncio
    async def test_put_new_file(self):
        host, seen = make_host(lambda request: httpx.Response(201, json={"content": {"sha": "abc123"}}))

        sha = await host.put_file("sriox-demo", "index.html", b"<h1>Hi</h1>")

        assert sha == "abc123"
        request = seen[0]
        assert request.method == "PUT"
        assert request.url.path == "/repos/Octo/sriox-demo/contents/index.html"
        body = json.loads(request.content)
        assert base64.b64decode(body["content"]) == b"<h1>Hi</h1>"
        assert "sha" not in body

    @pytest.mark.asyncio
    async def test_put_quotes_expected_fingerprint(self):
        host, seen = make_host(lambda request: httpx.Response(200, json={"content": {"sha": "new"}}))

        await host.put_file("sriox-demo", "index.html", b"x", expected_fingerprint="old")

        assert json.loads(seen[0].content)["sha"] == "old"

    @pytest.mark.asyncio
    async def test_put_stale_fingerprint_is_conflict(self):
        host, _ = make_host(lambda request: httpx.Response(
            409, json={"message": "index.html does not match old"}
        ))

        with pytest.raises(Conflict) as exc_info:
            await host.put_file("sriox-demo", "index.html", b"x", expected_fingerprint="old")

        assert "does not match" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_get_file_decodes_content(self):
        encoded = base64.b64encode(b"body { margin: 0 }").decode()
        host, _ = make_host(lambda request: httpx.Response(200, json={"content": encoded, "sha": "s1"}))

        fetched = await host.get_file("sriox-demo", "style.css")

        assert fetched.content == b"body { margin: 0 }"
        assert fetched.fingerprint == "s1"

    @pytest.mark.asyncio
    async def test_get_missing_file_not_found(self):
        host, _ = make_host(lambda request: httpx.Response(404, json={"message": "Not Found"}))
        with pytest.raises(NotFound):
            await host.get_file("sriox-demo", "gone.html")


class TestPages:
    """Tests for Pages enablement and configuration."""

    @pytest.mark.asyncio
    async def test_enable_pages_builds_from_main_root(self):
        host, seen = make_host(lambda request: httpx.Response(201, json={}))

        await host.enable_pages("sriox-demo")

        assert seen[0].url.path == "/repos/Octo/sriox-demo/pages"
        assert json.loads(seen[0].content)["source"] == {"branch": "main", "path": "/"}

    @pytest.mark.asyncio
    async def test_get_publish_status(self):
        host, _ = make_host(lambda request: httpx.Response(200, json={
            "status": "built",
            "https_enforced": False,
            "cname": "demo.sriox.test",
            "html_url": "http://demo.sriox.test/",
            "source": {"branch": "main", "path": "/"},
        }))

        status = await host.get_publish_status("sriox-demo")

        assert status.status == "built"
        assert status.https_enforced is False
        assert status.custom_domain == "demo.sriox.test"
        assert status.source == {"branch": "main", "path": "/"}

    @pytest.mark.asyncio
    async def test_get_publish_status_missing(self):
        host, _ = make_host(lambda request: httpx.Response(404, json={"message": "Not Found"}))
        with pytest.raises(NotFound):
            await host.get_publish_status("sriox-demo")

    @pytest.mark.asyncio
    async def test_set_publish_config_enforcing_https(self):
        host, seen = make_host(lambda request: httpx.Response(204))

        await host.set_publish_config("sriox-demo", "demo.sriox.test", enforce_https=True)

        body = json.loads(seen[0].content)
        assert body["cname"] == "demo.sriox.test"
        assert body["https_enforced"] is True

    @pytest.mark.asyncio
    async def test_set_publish_config_certificate_error(self):
        host, _ = make_host(lambda request: httpx.Response(
            404, json={"message": "The certificate does not exist yet"}
        ))

        with pytest.raises(UpstreamError, match="Failed to enable HTTPS: The certificate does not exist yet"):
            await host.set_publish_config("sriox-demo", "demo.sriox.test", enforce_https=True)
