"""Tests for GraphClient pagination and error propagation."""

import httpx
import pytest

from sp_usage_report.graph.client import GraphAPIError, GraphClient, assignments_key, owners_key

from conftest import FakeGraph, SP_PATH


class TestPagination:

    @pytest.mark.asyncio
    async def test_collects_every_page_in_order(self, make_client):
        pages = [[{"id": "a"}, {"id": "b"}], [{"id": "c"}], [{"id": "d"}, {"id": "e"}]]
        fake = FakeGraph(sp_pages=pages)

        async with make_client(fake) as client:
            items = await client.get_all_pages("servicePrincipals")

        assert [i["id"] for i in items] == ["a", "b", "c", "d", "e"]
        assert len(fake.requests) == 3

    @pytest.mark.asyncio
    async def test_single_page_without_next_link(self, make_client):
        fake = FakeGraph(sp_pages=[[{"id": "only"}]])

        async with make_client(fake) as client:
            items = await client.get_all_pages("servicePrincipals")

        assert items == [{"id": "only"}]
        assert len(fake.requests) == 1

    @pytest.mark.asyncio
    async def test_params_only_sent_on_first_page(self, make_client):
        fake = FakeGraph(sp_pages=[[{"id": "a"}], [{"id": "b"}]])

        async with make_client(fake) as client:
            await client.get_all_pages(
                "servicePrincipals", params={"$select": "id", "$top": "999"}
            )

        first, second = fake.requests
        assert first.url.params.get("$select") == "id"
        assert second.url.params.get("$select") is None
        assert second.url.params.get("$skiptoken") == "1"

    @pytest.mark.asyncio
    async def test_duplicates_are_kept(self, make_client):
        fake = FakeGraph(sp_pages=[[{"id": "a"}], [{"id": "a"}]])

        async with make_client(fake) as client:
            items = await client.get_all_pages("servicePrincipals")

        assert items == [{"id": "a"}, {"id": "a"}]

    @pytest.mark.asyncio
    async def test_beta_endpoint_url(self, make_client):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, json={"value": []})

        async with make_client(handler) as client:
            await client.get_all_pages("reports/servicePrincipalSignInActivities", beta=True)

        assert seen == [
            "https://graph.microsoft.com/beta/reports/servicePrincipalSignInActivities"
        ]

    @pytest.mark.asyncio
    async def test_empty_200_body_is_empty_page(self, make_client):
        async with make_client(lambda r: httpx.Response(200, content=b"")) as client:
            assert await client.get_all_pages("servicePrincipals") == []

    @pytest.mark.asyncio
    async def test_null_value_is_empty_page(self, make_client):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(200, json={
                    "value": None,
                    "@odata.nextLink": "https://graph.microsoft.com/v1.0/servicePrincipals?$skiptoken=x",
                })
            return httpx.Response(200, json={"value": [{"id": "a"}]})

        async with make_client(handler) as client:
            items = await client.get_all_pages("servicePrincipals")

        assert items == [{"id": "a"}]
        assert len(calls) == 2


class TestBatchKeys:

    def test_key_format(self):
        assert owners_key("sp-1") == "sp-1_owners"
        assert assignments_key("sp-1") == "sp-1_assignments"

    def test_keys_differ_per_lookup(self):
        assert owners_key("x") != assignments_key("x")


class TestErrors:

    @pytest.mark.asyncio
    async def test_failed_page_raises(self, make_client):
        fake = FakeGraph(sp_pages=[[{"id": "a"}]], fail_paths={SP_PATH})

        async with make_client(fake) as client:
            with pytest.raises(GraphAPIError) as exc:
                await client.get_all_pages("servicePrincipals")

        assert exc.value.status_code == 500
        assert "boom" in str(exc.value)

    @pytest.mark.asyncio
    async def test_failure_on_later_page_raises(self, make_client):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(200, json={
                    "value": [{"id": "a"}],
                    "@odata.nextLink": "https://graph.microsoft.com/v1.0/servicePrincipals?$skiptoken=x",
                })
            return httpx.Response(403, json={"error": {"message": "Forbidden"}})

        async with make_client(handler) as client:
            with pytest.raises(GraphAPIError) as exc:
                await client.get_all_pages("servicePrincipals")

        assert exc.value.status_code == 403

    @pytest.mark.asyncio
    async def test_throttling_is_not_retried(self, make_client):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429, headers={"Retry-After": "1"}, json={})

        async with make_client(handler) as client:
            with pytest.raises(GraphAPIError):
                await client.get_all_pages("servicePrincipals")

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_transport_error_becomes_graph_error(self, make_client):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(handler) as client:
            with pytest.raises(GraphAPIError) as exc:
                await client.get_all_pages("servicePrincipals")

        assert exc.value.status_code == 0

    @pytest.mark.asyncio
    async def test_client_requires_context(self, guardian):
        client = GraphClient("token", guardian)
        with pytest.raises(RuntimeError):
            await client.get_all_pages("servicePrincipals")

    @pytest.mark.asyncio
    async def test_authorization_header(self, make_client):
        seen = []

        def handler(request):
            seen.append(request.headers["Authorization"])
            return httpx.Response(200, json={"value": []})

        async with make_client(handler) as client:
            await client.get_all_pages("servicePrincipals")

        assert seen == ["Bearer test-token"]
