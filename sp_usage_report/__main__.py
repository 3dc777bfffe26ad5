"""
Service Principal Usage Report: command-line entry point.

Usage:
    python -m sp_usage_report --tenant-id <GUID> --client-id <GUID> --cert-path ./base64.txt
    python -m sp_usage_report --tenant-id <GUID> --client-id <GUID> --secret
    python -m sp_usage_report --tenant-id <GUID> --client-id <GUID> --delegated
    python -m sp_usage_report --config config.json --enrichment-errors marker

Certificate and secret values are read from SP_REPORT_CERT_PASSWORD /
SP_REPORT_CLIENT_SECRET, or prompted for.

This tool is STRICTLY READ-ONLY. It will NEVER modify the tenant.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from . import __version__
from .config import (
    EngineConfig,
    CertificateAuth,
    SecretAuth,
    DelegatedAuth,
    ConfigError,
    ENRICHMENT_ERROR_POLICIES,
    SORT_MODES,
)
from .safety.guardian import SafetyGuardian, SafetyViolation
from .auth.authenticator import Authenticator, AuthenticationError
from .graph.client import GraphClient, GraphAPIError
from .pipeline import run_report

logger = logging.getLogger("sp_usage_report")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="sp_usage_report",
        description="Service principal inventory and sign-in usage report (READ-ONLY)",
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        help="Path to JSON configuration file",
    )
    parser.add_argument("--tenant-id", type=str, default=None, help="Tenant ID (GUID)")
    parser.add_argument("--client-id", type=str, default=None, help="App registration client ID (GUID)")

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--cert-path",
        type=Path,
        help="Path to base64-encoded PFX for certificate auth (default mode)",
    )
    mode.add_argument(
        "--secret",
        action="store_true",
        help="Use client-secret authentication",
    )
    mode.add_argument(
        "--delegated",
        action="store_true",
        help="Use delegated (device-code) authentication",
    )

    parser.add_argument(
        "--output-dir", "-o",
        type=Path,
        default=None,
        help="Output directory for the report (default: ./sp_usage_reports)",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Sub-requests per $batch call (1-20, default: 20)",
    )
    parser.add_argument(
        "--max-concurrent-batches",
        type=int,
        default=None,
        help="Number of $batch calls in flight at once (default: 1, sequential)",
    )
    parser.add_argument(
        "--enrichment-errors",
        choices=list(ENRICHMENT_ERROR_POLICIES),
        default=None,
        help="How failed owner/assignment lookups are rendered (default: empty)",
    )
    parser.add_argument(
        "--sort",
        choices=list(SORT_MODES),
        default=None,
        help="Display-name ordering (default: casefold)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> EngineConfig:
    """Build configuration from an optional config file plus CLI overrides."""
    if args.config:
        config = EngineConfig.from_file(str(args.config))
    else:
        config = EngineConfig()

    tenant_id, client_id = args.tenant_id, args.client_id
    if tenant_id or client_id:
        if not (tenant_id and client_id):
            raise ConfigError("--tenant-id and --client-id must be given together")
        if args.delegated:
            config.auth.mode = "delegated"
            config.auth.delegated = DelegatedAuth(tenant_id=tenant_id, client_id=client_id)
        elif args.secret:
            config.auth.mode = "secret"
            config.auth.secret = SecretAuth(tenant_id=tenant_id, client_id=client_id)
        else:
            config.auth.mode = "certificate"
            config.auth.certificate = CertificateAuth(
                tenant_id=tenant_id,
                client_id=client_id,
                certificate_path=str(args.cert_path or "./base64.txt"),
            )
    elif args.cert_path and config.auth.certificate:
        config.auth.certificate.certificate_path = str(args.cert_path)

    if not any((config.auth.certificate, config.auth.secret, config.auth.delegated)):
        raise ConfigError(
            "No tenant credentials found. Use --tenant-id X --client-id Y "
            "or --config config.json"
        )

    if args.output_dir:
        config.output.base_dir = str(args.output_dir)
    if args.batch_size is not None:
        config.report.batch_size = args.batch_size
    if args.max_concurrent_batches is not None:
        config.report.max_concurrent_batches = args.max_concurrent_batches
    if args.enrichment_errors:
        config.report.enrichment_error_policy = args.enrichment_errors
    if args.sort:
        config.report.sort_mode = args.sort
    config.verbose = config.verbose or args.verbose

    return config.validate()


def configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


async def main_async(argv: Optional[Sequence[str]] = None) -> int:
    """Async entry point. Returns the process exit code."""
    args = parse_args(argv)

    try:
        config = build_config(args)
    except ConfigError as e:
        print(f"\n❌ {e}")
        return 2

    configure_logging(config.verbose)
    run_id = config.output.timestamp

    print("=" * 70)
    print(f" Service Principal Usage Report v{__version__}")
    print(" Mode: READ-ONLY. No tenant modifications will be made")
    print("=" * 70)
    print(f"\n📋 Run ID:  {run_id}")
    print(f"📂 Output:  {config.output.report_dir.resolve()}")
    print("\n🔑 Required Graph permissions:")
    for permission, purpose in Authenticator.list_required_permissions().items():
        print(f"   {permission:<32} {purpose}")

    guardian = SafetyGuardian()

    try:
        print("\n🔐 Authenticating...")
        token = await Authenticator(config.auth).acquire_token()
        print("✅ Authentication successful.")

        async with GraphClient(access_token=token, guardian=guardian) as client:
            path = await run_report(client, config, run_id)
    except AuthenticationError as e:
        logger.error(f"Authentication failed: {e}")
        print("❌ Authentication failed. Exiting.")
        return 1
    except (GraphAPIError, SafetyViolation, RuntimeError, OSError, ValueError) as e:
        logger.error(f"Report aborted: {type(e).__name__}: {e}")
        print("❌ Report aborted. No report was written.")
        return 1

    audit = guardian.get_audit_record()
    print("\n" + "=" * 70)
    print(" REPORT COMPLETE")
    print("=" * 70)
    print(f"\n  File:   {path.resolve()}")
    print(f"  Safety: {audit['status']} ({audit['checks_performed']} requests checked)")
    print()
    return 0


def main():
    """Synchronous entry point for `python -m sp_usage_report`."""
    sys.exit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
