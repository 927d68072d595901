"""Sync orchestration between providers, the categorizer and the store."""

from .orchestrator import AdapterFactory, SyncOrchestrator, SyncPhase

__all__ = ["AdapterFactory", "SyncOrchestrator", "SyncPhase"]
