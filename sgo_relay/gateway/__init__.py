"""
Gateway Package
===============

Session-scoped forwarding of read requests to the school system.

Main Components:
----------------
- client.py: SchoolClient, upstream calls with stored cookies and token
- routes.py: FastAPI router with the data endpoints (/api/diary, ...)
"""

from .routes import gateway_router

__all__ = ["gateway_router"]
