"""Tests for the Cloudflare DNS adapter, using httpx.MockTransport."""

import json

import httpx
import pytest

from sriox.dns import CloudflareDns, clean_target
from sriox.errors import UpstreamError

ZONE_PATH = "/client/v4/zones/zone-1/dns_records"


def make_dns(handler) -> tuple[CloudflareDns, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    dns = CloudflareDns(
        token="cf-token",
        zone_id="zone-1",
        base_domain="sriox.test",
        api_url="https://api.cloudflare.test/client/v4",
        transport=httpx.MockTransport(record),
    )
    return dns, seen


def listing(*records: dict) -> httpx.Response:
    return httpx.Response(200, json={"success": True, "result": list(records)})


EXISTING = {"id": "rec-1", "name": "demo.sriox.test", "content": "octo.github.io"}


@pytest.mark.parametrize("target,expected", [
    ("https://octo.github.io/sriox-demo", "octo.github.io"),
    ("http://octo.github.io", "octo.github.io"),
    ("octo.github.io", "octo.github.io"),
])
def test_clean_target(target, expected):
    assert clean_target(target) == expected


class TestCloudflareDns:
    """Tests for CNAME record management."""

    @pytest.mark.asyncio
    async def test_create_record(self):
        dns, seen = make_dns(lambda request: httpx.Response(200, json={"result": {"id": "rec-9"}}))

        record = await dns.create_record("demo", "https://octo.github.io/sriox-demo")

        assert record.id == "rec-9"
        assert record.name == "demo.sriox.test"
        assert record.target == "octo.github.io"
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == ZONE_PATH
        assert request.headers["Authorization"] == "Bearer cf-token"
        assert json.loads(request.content) == {
            "type": "CNAME",
            "name": "demo.sriox.test",
            "content": "octo.github.io",
            "ttl": 1,
        }

    @pytest.mark.asyncio
    async def test_create_record_error_uses_first_message(self):
        dns, _ = make_dns(lambda request: httpx.Response(400, json={
            "success": False,
            "errors": [{"code": 81053, "message": "An A, AAAA, or CNAME record with that host already exists."}],
        }))

        with pytest.raises(UpstreamError) as exc_info:
            await dns.create_record("demo", "octo.github.io")

        assert "already exists" in exc_info.value.message
        assert exc_info.value.service == "cloudflare"

    @pytest.mark.asyncio
    async def test_find_record(self):
        dns, seen = make_dns(lambda request: listing(EXISTING))

        record = await dns.find_record("demo")

        assert record.id == "rec-1"
        assert record.target == "octo.github.io"
        assert seen[0].url.params["name"] == "demo.sriox.test"

    @pytest.mark.asyncio
    async def test_find_record_absent(self):
        dns, _ = make_dns(lambda request: listing())
        assert await dns.find_record("demo") is None

    @pytest.mark.asyncio
    async def test_delete_record(self):
        def handler(request):
            if request.method == "GET":
                return listing(EXISTING)
            return httpx.Response(200, json={"result": {"id": "rec-1"}})

        dns, seen = make_dns(handler)

        assert await dns.delete_record("demo") is True
        assert seen[1].method == "DELETE"
        assert seen[1].url.path == f"{ZONE_PATH}/rec-1"

    @pytest.mark.asyncio
    async def test_delete_absent_record_returns_false(self):
        dns, seen = make_dns(lambda request: listing())

        assert await dns.delete_record("demo") is False
        assert [request.method for request in seen] == ["GET"]

    @pytest.mark.asyncio
    async def test_update_record_repoints_existing(self):
        def handler(request):
            if request.method == "GET":
                return listing({**EXISTING, "content": "old.example.com"})
            return httpx.Response(200, json={"result": {"id": "rec-1"}})

        dns, seen = make_dns(handler)

        record = await dns.update_record("demo", "octo.github.io")

        assert record.target == "octo.github.io"
        assert seen[1].method == "PUT"
        assert seen[1].url.path == f"{ZONE_PATH}/rec-1"

    @pytest.mark.asyncio
    async def test_update_record_creates_when_missing(self):
        def handler(request):
            if request.method == "GET":
                return listing()
            return httpx.Response(200, json={"result": {"id": "rec-2"}})

        dns, seen = make_dns(handler)

        record = await dns.update_record("demo", "octo.github.io")

        assert record.id == "rec-2"
        assert seen[1].method == "POST"

    @pytest.mark.asyncio
    async def test_connection_error_is_upstream_error(self):
        def refuse(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        dns, _ = make_dns(refuse)

        with pytest.raises(UpstreamError, match="Failed to connect to Cloudflare"):
            await dns.find_record("demo")

    @pytest.mark.asyncio
    async def test_list_records_follows_pages(self):
        def handler(request):
            page = int(request.url.params["page"])
            records = [EXISTING] if page == 1 else [
                {"id": "rec-2", "name": "other.sriox.test", "content": "octo.github.io"},
                {"id": "rec-3", "name": "elsewhere.example.com", "content": "octo.github.io"},
            ]
            return httpx.Response(200, json={"result": records, "result_info": {"page": page, "total_pages": 2}})

        dns, seen = make_dns(handler)

        records = await dns.list_records()

        assert [record.name for record in records] == ["demo.sriox.test", "other.sriox.test"]
        assert seen[0].url.params["type"] == "CNAME"
        assert len(seen) == 2
