"""
Browser automation for the reservation portal
"""
from .adapter import SiteAdapter
from .engine import ExecutionEngine, PlannedAttempt, run_concurrent
from .orchestrator import ClaimOrchestrator
from .session import SessionHandle

__all__ = [
    "SiteAdapter",
    "ExecutionEngine",
    "PlannedAttempt",
    "run_concurrent",
    "ClaimOrchestrator",
    "SessionHandle",
]
