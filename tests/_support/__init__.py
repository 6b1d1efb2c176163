"""
Test support utilities for Conduit tests.

Fakes that stand in for the database layer where a real engine would
only obscure what a test is checking.
"""

MEMORY_URL = "sqlite+aiosqlite://"
