"""
Datastore SDK Test Suite.

This package contains:
- unit/: Unit tests (scripted transport, no network)
- integration/: Client flows across save, get and query
"""
