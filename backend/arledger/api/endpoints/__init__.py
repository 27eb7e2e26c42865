"""API endpoints package."""

from arledger.api.endpoints import analytics, filters, health, reconciliation

__all__ = ["analytics", "filters", "health", "reconciliation"]
