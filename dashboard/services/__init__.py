"""Services layer for the Runwatch dashboard.

This module wires the run pipeline (store, archiver, supervisor) to the API.
"""

from dashboard.services.runs import RunServices, build_services, get_services

__all__ = ["RunServices", "build_services", "get_services"]
