"""
Safety Guardian: enforces read-only operation.
Validates every outbound request, including each sub-request of a $batch body.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger("sp_usage_report.safety")

# ─── Allowed HTTP Methods ────────────────────────────────────────────────────

READ_METHODS = {"GET", "HEAD", "OPTIONS"}

# The only POST this tool issues: batched reads
SAFE_POST_ENDPOINTS = [
    re.compile(r"/\$batch$"),
]


class SafetyViolation(Exception):
    """Raised when a write operation is attempted."""
    pass


class SafetyGuardian:
    """
    Validates every outbound HTTP request to ensure read-only operation.
    Keeps an audit record of checks performed and violations raised.
    """

    def __init__(self):
        self.violations: list[dict] = []
        self.checks_performed: int = 0
        self.started_at: str = datetime.now(timezone.utc).isoformat()

    def validate_request(self, method: str, url: str, body: Optional[dict] = None) -> bool:
        """
        Validate that a request is read-only.
        Returns True if safe, raises SafetyViolation if not.
        """
        self.checks_performed += 1
        method_upper = method.upper()

        if method_upper in READ_METHODS:
            return True

        if method_upper == "POST" and any(p.search(url) for p in SAFE_POST_ENDPOINTS):
            self._validate_batch_body(url, body)
            return True

        self._record_violation(method_upper, url, "Write HTTP method blocked")
        raise SafetyViolation(
            f"SAFETY VIOLATION: Write method blocked: {method_upper} {url}"
        )

    def _validate_batch_body(self, url: str, body: Optional[dict]):
        """Every sub-request inside a $batch must itself be a read."""
        for sub in (body or {}).get("requests", []):
            sub_method = str(sub.get("method", "")).upper()
            if sub_method not in READ_METHODS:
                target = f"{url} -> {sub_method} {sub.get('url')}"
                self._record_violation(sub_method, target, "Write sub-request in $batch")
                raise SafetyViolation(
                    f"SAFETY VIOLATION: Write sub-request blocked in batch: "
                    f"{sub_method} {sub.get('url')} (id={sub.get('id')})"
                )

    def _record_violation(self, method: str, url: str, reason: str):
        violation = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "method": method,
            "url": url,
            "reason": reason,
        }
        self.violations.append(violation)
        logger.critical(f"SAFETY VIOLATION: {reason}: {method} {url}")

    def get_audit_record(self) -> dict:
        """Return the safety audit record for this run."""
        return {
            "mode": "READ-ONLY",
            "started_at": self.started_at,
            "checks_performed": self.checks_performed,
            "violations_detected": len(self.violations),
            "violations": self.violations,
            "status": "CLEAN" if not self.violations else "VIOLATIONS_DETECTED",
        }
