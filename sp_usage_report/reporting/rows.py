"""
Report row compiler: joins a service principal with its owners, assignments
and sign-in activity into one flat, immutable row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, astuple
from typing import Any, Iterable, Mapping, Optional

from ..graph.client import BatchResponse, owners_key, assignments_key

logger = logging.getLogger("sp_usage_report.reporting")

LOOKUP_FAILED = "<lookup failed>"

STATUS_ACTIVE = "Active"
STATUS_NEVER = "Never Signed In"

# Report column -> nested signInActivity structure in the beta report
SIGN_IN_SOURCES = {
    "LastInteractiveSignIn": "lastSignInActivity",
    "LastClientCredentialSignIn": "applicationAuthenticationClientSignInActivity",
    "LastDelegatedClientSignIn": "delegatedClientSignInActivity",
    "LastDelegatedResourceSignIn": "delegatedResourceSignInActivity",
}


@dataclass(frozen=True)
class ReportRow:
    """One report line. Field order is the CSV column order."""
    DisplayName: str = ""
    Id: str = ""
    AppId: str = ""
    Homepage: str = ""
    PublisherName: str = ""
    CreatedDateTime: str = ""
    AccountEnabled: str = ""
    AppRoleAssignmentRequired: str = ""
    Tags: str = ""
    Oauth2PermissionScopes: str = ""
    AppRoles: str = ""
    OwnersUPNs: str = ""
    AssignedUsersAndGroups: str = ""
    LastInteractiveSignIn: str = ""
    LastClientCredentialSignIn: str = ""
    LastDelegatedClientSignIn: str = ""
    LastDelegatedResourceSignIn: str = ""
    SignInStatus: str = STATUS_NEVER

    @classmethod
    def field_names(cls) -> list[str]:
        return [f.name for f in fields(cls)]

    def to_dict(self) -> dict[str, str]:
        return dict(zip(self.field_names(), astuple(self)))


def _text(value: Any) -> str:
    """Render a scalar in the report's single textual form."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "True" if value else "False"
    return str(value)


def _joined_values(definitions: Optional[list], sep: str = "; ") -> str:
    return sep.join(_text(d.get("value")) for d in definitions or [])


def index_sign_ins(records: Iterable[dict[str, Any]]) -> dict[str, dict[str, Any]]:
    """Map appId -> sign-in record; the first record seen for an appId wins."""
    index: dict[str, dict[str, Any]] = {}
    duplicates = 0
    for rec in records:
        app_id = rec.get("appId")
        if not app_id:
            continue
        if app_id in index:
            duplicates += 1
            continue
        index[app_id] = rec
    if duplicates:
        logger.debug(f"Ignored {duplicates} duplicate sign-in records")
    return index


def _owners(resp: Optional[BatchResponse], error_policy: str) -> str:
    if resp is None:
        return ""
    if not resp.ok:
        return LOOKUP_FAILED if error_policy == "marker" else ""
    upns = [o.get("userPrincipalName") for o in resp.body.get("value", [])]
    return ", ".join(u for u in upns if u)


def _assignments(resp: Optional[BatchResponse], error_policy: str) -> str:
    if resp is None:
        return ""
    if not resp.ok:
        return LOOKUP_FAILED if error_policy == "marker" else ""
    return ", ".join(
        f"{_text(a.get('principalDisplayName'))} [{_text(a.get('principalType'))}]"
        for a in resp.body.get("value", [])
    )


def _sign_ins(record: Optional[dict[str, Any]]) -> dict[str, str]:
    out = {}
    for column, source in SIGN_IN_SOURCES.items():
        activity = (record or {}).get(source) or {}
        out[column] = _text(activity.get("lastSignInDateTime"))
    return out


def compile_row(
    entity: dict[str, Any],
    enrichment: Mapping[str, BatchResponse],
    sign_ins: Mapping[str, dict[str, Any]],
    error_policy: str = "empty",
) -> ReportRow:
    """Build the report row for one service principal. Pure and deterministic."""
    sp_id = _text(entity.get("id"))
    app_id = _text(entity.get("appId"))
    activity = _sign_ins(sign_ins.get(app_id) if app_id else None)

    return ReportRow(
        DisplayName=_text(entity.get("displayName")),
        Id=sp_id,
        AppId=app_id,
        Homepage=_text(entity.get("homepage")),
        PublisherName=_text(entity.get("publisherName")),
        CreatedDateTime=_text(entity.get("createdDateTime")),
        AccountEnabled=_text(entity.get("accountEnabled")),
        AppRoleAssignmentRequired=_text(entity.get("appRoleAssignmentRequired")),
        Tags=", ".join(_text(t) for t in entity.get("tags") or []),
        Oauth2PermissionScopes=_joined_values(entity.get("oauth2PermissionScopes")),
        AppRoles=_joined_values(entity.get("appRoles")),
        OwnersUPNs=_owners(enrichment.get(owners_key(sp_id)), error_policy),
        AssignedUsersAndGroups=_assignments(enrichment.get(assignments_key(sp_id)), error_policy),
        SignInStatus=STATUS_ACTIVE if any(activity.values()) else STATUS_NEVER,
        **activity,
    )


def compile_rows(
    entities: list[dict[str, Any]],
    enrichment: Mapping[str, BatchResponse],
    sign_in_records: Iterable[dict[str, Any]],
    error_policy: str = "empty",
) -> list[ReportRow]:
    """Exactly one row per entity, in entity order."""
    sign_ins = index_sign_ins(sign_in_records)
    rows = [compile_row(sp, enrichment, sign_ins, error_policy) for sp in entities]
    active = sum(1 for r in rows if r.SignInStatus == STATUS_ACTIVE)
    logger.info(f"Compiled {len(rows)} rows ({active} active, {len(rows) - active} never signed in)")
    return rows
