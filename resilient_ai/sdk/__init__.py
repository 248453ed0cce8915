"""
SDK for the resilient AI orchestrator.

Provides programmatic access to resilient request orchestration.
"""

from .orchestrator import OrchestrationResult, Orchestrator, RequestOptions
from .transport import ProviderTransport

__all__ = ["Orchestrator", "OrchestrationResult", "RequestOptions", "ProviderTransport"]
