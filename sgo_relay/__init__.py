"""
School portal relay.

Holds server-side sessions for a chat-platform mini-app and forwards its
requests to the school portal (SGO), after either a username/password login
or an identity provider (ESIA) OAuth login.
"""

__version__ = "1.0.0"
