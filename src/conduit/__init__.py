"""
Conduit — infrastructure layer of a RealWorld-style article API.

Provides the request dispatch pipeline with per-request database
transactions, startup-time schema provisioning with bounded retry, and
the FastAPI composition root that wires them together.

Tags:
    conduit, infrastructure, transactions, bootstrap

Doc-Types:
    api-reference
"""

__version__ = "0.1.0"
