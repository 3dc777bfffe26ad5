"""
Service Principal Usage Report
==============================
Read-only inventory of a tenant's service principals, joined with their owners,
app role assignments and sign-in activity, exported as a single CSV.

WARNING: This tool operates in STRICT READ-ONLY mode.
         No write operations will be performed against the tenant.
"""

__version__ = "1.0.0"
