"""Test configuration and fixtures."""

import json
import logging

import httpx
import pytest

from sp_usage_report.graph.client import GraphClient
from sp_usage_report.safety.guardian import SafetyGuardian

GRAPH = "https://graph.microsoft.com"
SP_PATH = "/v1.0/servicePrincipals"
SIGN_IN_PATH = "/beta/reports/servicePrincipalSignInActivities"
BATCH_PATH = "/v1.0/$batch"


def pytest_configure(config):
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class FakeGraph:
    """
    Minimal Graph stand-in for httpx.MockTransport.

    Serves paginated listings from lists of pages (continuation via $skiptoken)
    and answers $batch bodies from owners/assignments dicts keyed by SP id.
    """

    def __init__(
        self,
        sp_pages=None,
        sign_in_pages=None,
        owners=None,
        assignments=None,
        failing_sub_requests=(),
        fail_paths=(),
    ):
        self.pages = {
            SP_PATH: sp_pages if sp_pages is not None else [[]],
            SIGN_IN_PATH: sign_in_pages if sign_in_pages is not None else [[]],
        }
        self.owners = owners or {}
        self.assignments = assignments or {}
        self.failing_sub_requests = set(failing_sub_requests)
        self.fail_paths = set(fail_paths)
        self.requests = []
        self.batch_bodies = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path in self.fail_paths:
            return httpx.Response(
                500, json={"error": {"code": "InternalServerError", "message": "boom"}}
            )
        if path == BATCH_PATH and request.method == "POST":
            return self._batch(json.loads(request.content))
        if path in self.pages:
            return self._page(path, request)
        return httpx.Response(404, json={"error": {"code": "NotFound", "message": path}})

    def _page(self, path, request):
        pages = self.pages[path]
        index = int(request.url.params.get("$skiptoken", "0"))
        body = {"value": pages[index]}
        if index + 1 < len(pages):
            body["@odata.nextLink"] = f"{GRAPH}{path}?$skiptoken={index + 1}"
        return httpx.Response(200, json=body)

    def _batch(self, body):
        self.batch_bodies.append(body)
        responses = []
        for sub in body["requests"]:
            sp_id = sub["url"].split("/")[2]
            if sub["id"] in self.failing_sub_requests:
                responses.append({
                    "id": sub["id"],
                    "status": 403,
                    "body": {"error": {
                        "code": "Authorization_RequestDenied",
                        "message": "Insufficient privileges to complete the operation.",
                    }},
                })
                continue
            source = self.owners if "/owners" in sub["url"] else self.assignments
            responses.append({
                "id": sub["id"],
                "status": 200,
                "body": {"value": source.get(sp_id, [])},
            })
        # Graph does not promise response order
        responses.reverse()
        return httpx.Response(200, json={"responses": responses})


@pytest.fixture
def guardian():
    return SafetyGuardian()


@pytest.fixture
def make_client(guardian):
    """Factory for a GraphClient whose HTTP traffic goes to the given handler."""
    def _make(handler):
        return GraphClient("test-token", guardian, transport=httpx.MockTransport(handler))
    return _make


@pytest.fixture
def contoso_entity():
    return {
        "id": "sp-1",
        "appId": "app-1",
        "displayName": "Contoso App",
        "homepage": "https://contoso.example.com",
        "publisherName": "Contoso",
        "tags": ["prod", "finance"],
        "createdDateTime": "2023-05-01T10:00:00Z",
        "appRoleAssignmentRequired": True,
        "accountEnabled": False,
        "oauth2PermissionScopes": [{"value": "user_impersonation"}, {"value": "Files.Read"}],
        "appRoles": [{"value": "Reader"}],
    }
