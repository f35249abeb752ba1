"""Orchestrator for syncloop.

This module provides the core orchestration functionality for syncloop,
including the orchestrator and the Application loader.
"""

from .orchestrator import Orchestrator, ApplicationStatus
from .loader import ApplicationLoader, LoadOptions, load_applications

__all__ = [
    "Orchestrator",
    "ApplicationStatus",
    "ApplicationLoader",
    "LoadOptions",
    "load_applications",
]
