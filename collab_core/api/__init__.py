"""
Request handlers and service wiring for the commit and metered-call
endpoints.
"""

from .handlers import ApiResponse, handle_commit, handle_metered_call
from .services import Services, build_memory_services, build_sqlite_services

__all__ = [
    "ApiResponse",
    "Services",
    "build_memory_services",
    "build_sqlite_services",
    "handle_commit",
    "handle_metered_call",
]
