from .base import BaseCollector, CollectorResult
from .apps import (
    ServicePrincipalCollector,
    SignInActivityCollector,
    OwnershipCollector,
    build_enrichment_requests,
)

__all__ = [
    "BaseCollector",
    "CollectorResult",
    "ServicePrincipalCollector",
    "SignInActivityCollector",
    "OwnershipCollector",
    "build_enrichment_requests",
]
