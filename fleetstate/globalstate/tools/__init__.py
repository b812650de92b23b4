"""
CLI tools for global state administration.

This module provides command-line tools for:
- cli: Run get/put/delete/batch-get/seek against a database file or owner node

Invariants:
    - Tools go through GlobalState, never around it
"""

from .cli import GlobalStateCLI

__all__ = ["GlobalStateCLI"]
