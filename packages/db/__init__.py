"""Database models and utilities."""

from .models import ServiceRequestAuditTable, ServiceRequestTable

__all__ = [
    "ServiceRequestAuditTable",
    "ServiceRequestTable",
]
