"""
ORM models.

Importing this package registers every table on Base.metadata,
which create_all_tables() relies on.
"""

from lynxa.models.owner import Owner
from lynxa.models.api_key import APIKey
from lynxa.models.usage import UsageLog
from lynxa.models.audit import AuditLog

__all__ = ["Owner", "APIKey", "UsageLog", "AuditLog"]
