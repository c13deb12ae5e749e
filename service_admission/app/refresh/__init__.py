"""
Refresh package for the Admission Service.
"""

from .orchestrator import RefreshOrchestrator, STALENESS_WINDOW, is_stale, utc_now

__all__ = ["RefreshOrchestrator", "STALENESS_WINDOW", "is_stale", "utc_now"]
