"""
Core orchestration modules.

Contains:
- event_bus: lifecycle listeners and dispatch
- cancellation: per-action cancel tokens
- errors: error taxonomy and normalization
- orchestrator: tracked request lifecycle
"""
