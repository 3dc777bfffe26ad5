"""
Configuration module for the Service Principal Usage Report.
Defines tunable parameters, Graph endpoints, and operational settings.
"""

from __future__ import annotations

import os
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from datetime import datetime, timezone


class ConfigError(Exception):
    """Raised when configuration values are missing or invalid."""
    pass


# ─── Tenant Authentication ───────────────────────────────────────────────────

@dataclass
class CertificateAuth:
    """Certificate-based app-only authentication configuration."""
    tenant_id: str
    client_id: str
    certificate_path: str          # Path to base64-encoded PFX
    certificate_password: str = "" # Falls back to env var, then prompt

@dataclass
class SecretAuth:
    """Client-secret app-only authentication configuration."""
    tenant_id: str
    client_id: str
    client_secret: str = ""        # Falls back to env var, then prompt

@dataclass
class DelegatedAuth:
    """Delegated (device code) authentication configuration."""
    tenant_id: str
    client_id: str
    scopes: list[str] = field(default_factory=lambda: [
        "Application.Read.All",
        "AuditLog.Read.All",
        "Directory.Read.All",
    ])

AUTH_MODES = ("certificate", "secret", "delegated")

@dataclass
class AuthConfig:
    """Authentication configuration: certificate, secret or delegated."""
    mode: str = "certificate"
    certificate: Optional[CertificateAuth] = None
    secret: Optional[SecretAuth] = None
    delegated: Optional[DelegatedAuth] = None


# ─── Graph API Settings ─────────────────────────────────────────────────────

GRAPH_BASE_URL = "https://graph.microsoft.com"
GRAPH_API_VERSION = "v1.0"
GRAPH_BETA_VERSION = "beta"

GRAPH_TIMEOUT_SECONDS = 60.0      # Per-request read timeout
GRAPH_CONNECT_TIMEOUT_SECONDS = 30.0

# Pagination
DEFAULT_PAGE_SIZE = 999           # Maximum items per page ($top)

# Batch
BATCH_SIZE = 20                   # Graph $batch max is 20 requests

# Endpoints
SERVICE_PRINCIPALS_ENDPOINT = "servicePrincipals"
SIGN_IN_ACTIVITY_ENDPOINT = "reports/servicePrincipalSignInActivities"  # beta only

SERVICE_PRINCIPAL_FIELDS = [
    "id",
    "appId",
    "displayName",
    "homepage",
    "publisherName",
    "tags",
    "createdDateTime",
    "appRoleAssignmentRequired",
    "accountEnabled",
    "oauth2PermissionScopes",
    "appRoles",
]


# ─── Report Settings ────────────────────────────────────────────────────────

ENRICHMENT_ERROR_POLICIES = ("empty", "marker")
SORT_MODES = ("casefold", "ordinal")


def _is_int(value) -> bool:
    # JSON true/false load as bool, which is an int subclass
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass
class ReportConfig:
    """Controls for enrichment and report compilation."""
    batch_size: int = BATCH_SIZE
    max_concurrent_batches: int = 1        # 1 = strictly sequential groups
    enrichment_error_policy: str = "empty" # "empty" or "marker"
    sort_mode: str = "casefold"            # "casefold" or "ordinal"


# ─── Output Configuration ───────────────────────────────────────────────────

@dataclass
class OutputConfig:
    """Output directory and run timestamp."""
    base_dir: str = ""
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        if not self.base_dir:
            self.base_dir = os.path.join(os.getcwd(), "sp_usage_reports")

    @property
    def report_dir(self) -> Path:
        return Path(self.base_dir)


# ─── Master Configuration ───────────────────────────────────────────────────

@dataclass
class EngineConfig:
    """Top-level configuration for a report run."""
    auth: AuthConfig = field(default_factory=AuthConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    verbose: bool = False

    @classmethod
    def from_file(cls, path: str) -> "EngineConfig":
        """Load configuration from a JSON file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read config file {path}: {e}")

        config = cls()
        try:
            if "auth" in data:
                auth_data = data["auth"]
                config.auth.mode = auth_data.get("mode", "certificate")
                if "certificate" in auth_data:
                    c = auth_data["certificate"]
                    config.auth.certificate = CertificateAuth(
                        tenant_id=c["tenant_id"],
                        client_id=c["client_id"],
                        certificate_path=c.get("certificate_path", "./base64.txt"),
                        certificate_password=c.get("certificate_password", ""),
                    )
                if "secret" in auth_data:
                    s = auth_data["secret"]
                    config.auth.secret = SecretAuth(
                        tenant_id=s["tenant_id"],
                        client_id=s["client_id"],
                        client_secret=s.get("client_secret", ""),
                    )
                if "delegated" in auth_data:
                    d = auth_data["delegated"]
                    config.auth.delegated = DelegatedAuth(
                        tenant_id=d["tenant_id"],
                        client_id=d["client_id"],
                    )
                    if "scopes" in d:
                        config.auth.delegated.scopes = list(d["scopes"])
        except KeyError as e:
            raise ConfigError(f"Missing auth setting in {path}: {e}")

        if "report" in data:
            for k, v in data["report"].items():
                if hasattr(config.report, k):
                    setattr(config.report, k, v)
        if "output" in data:
            for k, v in data["output"].items():
                if hasattr(config.output, k):
                    setattr(config.output, k, v)
        config.verbose = data.get("verbose", False)
        return config

    def validate(self) -> "EngineConfig":
        """Raise ConfigError if any setting is out of range."""
        if self.auth.mode not in AUTH_MODES:
            raise ConfigError(f"Unknown auth mode: {self.auth.mode}")
        r = self.report
        if not _is_int(r.batch_size) or not 1 <= r.batch_size <= BATCH_SIZE:
            raise ConfigError(
                f"batch_size must be between 1 and {BATCH_SIZE}, got {r.batch_size!r}"
            )
        if not _is_int(r.max_concurrent_batches) or r.max_concurrent_batches < 1:
            raise ConfigError(
                f"max_concurrent_batches must be >= 1, got {r.max_concurrent_batches!r}"
            )
        if r.enrichment_error_policy not in ENRICHMENT_ERROR_POLICIES:
            raise ConfigError(
                f"enrichment_error_policy must be one of {ENRICHMENT_ERROR_POLICIES}, "
                f"got {r.enrichment_error_policy!r}"
            )
        if r.sort_mode not in SORT_MODES:
            raise ConfigError(
                f"sort_mode must be one of {SORT_MODES}, got {r.sort_mode!r}"
            )
        return self


# ─── Required Graph API Permissions (Least Privilege, Read-Only) ─────────

REQUIRED_PERMISSIONS = {
    "Application.Read.All": "Read service principals and their owners",
    "Directory.Read.All": "Resolve owner and assignment principals",
    "AuditLog.Read.All": "Read service principal sign-in activity reports",
}
