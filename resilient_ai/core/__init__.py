"""
Core modules for the resilient AI orchestrator.

This package contains credential storage, quota tracking, response caching,
provider dispatch and the local fallback engine.
"""
