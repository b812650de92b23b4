"""
Global State - a fleet-wide key-value namespace for a social-network node.

One node owns the data in an embedded ordered key-value engine. Every other
node is configured with the owner's address and a shared secret, and forwards
each operation to it over HTTP. Callers cannot tell the two cases apart.

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌──────────────────┐
    │   Caller    │────▶│ GlobalState │────▶│    LocalStore    │  (owner)
    │ (records)   │     │  dispatch   │     │ SQLite / memory  │
    └─────────────┘     └──────┬──────┘     └──────────────────┘
                               │ remote owner configured
                               ▼
                        ┌─────────────┐     ┌──────────────────┐
                        │ RemoteProxy │────▶│  owner's HTTP    │
                        │   Client    │     │  handlers        │
                        └─────────────┘     └──────────────────┘

Invariants:
    - Keys are a one-byte record kind followed by fixed-width fields
    - Missing keys read as empty values, never as errors
    - The owner is fixed at startup

How to change safely:
    - New record kinds take the next unused prefix byte
    - Never reorder or resize the fields of an existing kind
"""

from ._version import __version__

__all__ = ["__version__"]
