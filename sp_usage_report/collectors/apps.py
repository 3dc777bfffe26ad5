"""
Enterprise application collectors.
Enumerates: service principals, their sign-in activity, and their owners and
app role assignments (fetched through keyed $batch calls).
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from ..config import (
    DEFAULT_PAGE_SIZE,
    SERVICE_PRINCIPALS_ENDPOINT,
    SERVICE_PRINCIPAL_FIELDS,
    SIGN_IN_ACTIVITY_ENDPOINT,
)
from ..graph.client import BatchRequest, owners_key, assignments_key
from .base import BaseCollector, CollectorResult

logger = logging.getLogger("sp_usage_report.collectors.apps")


def build_enrichment_requests(entities: Iterable[dict[str, Any]]) -> list[BatchRequest]:
    """
    Two keyed sub-requests per service principal: owners and assignments.
    An id listed more than once is looked up once; every copy shares the result.
    """
    requests = []
    seen: set[str] = set()
    for sp in entities:
        sp_id = sp.get("id")
        if not sp_id or sp_id in seen:
            continue
        seen.add(sp_id)
        requests.append(BatchRequest(
            id=owners_key(sp_id),
            url=f"/servicePrincipals/{sp_id}/owners"
                f"?$select=userPrincipalName&$top={DEFAULT_PAGE_SIZE}",
        ))
        requests.append(BatchRequest(
            id=assignments_key(sp_id),
            url=f"/servicePrincipals/{sp_id}/appRoleAssignedTo"
                f"?$select=principalDisplayName,principalType&$top={DEFAULT_PAGE_SIZE}",
        ))
    return requests


class ServicePrincipalCollector(BaseCollector):
    name = "service_principals"
    description = "All service principals with the attributes shown in the report"

    async def collect(self, result: CollectorResult):
        sps = await self.get_all(
            SERVICE_PRINCIPALS_ENDPOINT,
            result,
            params={
                "$select": ",".join(SERVICE_PRINCIPAL_FIELDS),
                "$top": str(DEFAULT_PAGE_SIZE),
            },
        )
        result.add_data("service_principals", sps)


class SignInActivityCollector(BaseCollector):
    name = "sign_in_activity"
    description = "Service principal sign-in activity report (beta)"

    async def collect(self, result: CollectorResult):
        # Activity lags real sign-ins by up to 24h upstream.
        records = await self.get_all(SIGN_IN_ACTIVITY_ENDPOINT, result, beta=True)
        result.add_data("sign_in_activity", records)


class OwnershipCollector(BaseCollector):
    name = "ownership"
    description = "Owners and app role assignments per service principal via $batch"

    def __init__(self, graph, config, entities: list[dict[str, Any]]):
        super().__init__(graph, config)
        self.entities = entities

    async def collect(self, result: CollectorResult):
        requests = build_enrichment_requests(self.entities)
        logger.info(
            f"[{self.name}] Dispatching {len(requests)} sub-requests "
            f"in batches of {self.config.batch_size}"
        )
        responses = await self.graph.batch(
            requests,
            batch_size=self.config.batch_size,
            max_concurrency=self.config.max_concurrent_batches,
        )
        result.metadata["endpoints_queried"] += 1

        errors = [r for r in responses.values() if not r.ok]
        result.metadata["sub_request_errors"] = len(errors)
        if errors:
            result.add_warning(
                f"{len(errors)} of {len(responses)} owner/assignment lookups failed"
            )
        for r in responses.values():
            if r.ok and r.body.get("@odata.nextLink"):
                logger.debug(f"[{self.name}] {r.id} has more than one page; extra pages not fetched")

        result.add_data("enrichment", responses)
