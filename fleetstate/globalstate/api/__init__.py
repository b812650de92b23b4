"""
API module for the global state service.

This module provides the peer-facing interface:
- HTTP server (the five global state routes plus health)

Invariants:
    - Handlers only call into GlobalState, never into storage directly
    - Routes and field names match wire.py

How to change safely:
    - Add new routes, don't modify existing ones
"""

from .http_server import create_http_app, run_http_server

__all__ = [
    "create_http_app",
    "run_http_server",
]
