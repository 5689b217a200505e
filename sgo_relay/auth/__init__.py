"""
Authentication Package

This package handles session management and both login protocols of the
relay: school system username/password login and identity provider
(OAuth2 authorization code + PKCE) login.

Modules:
- cookies: Cookie jar encoding/decoding for the school system
- pkce: State token and PKCE verifier/challenge generation
- state_store: Pending authorizations keyed by state token
- session: Session store and the bearer session dependency
- password_login: Two-step school system login handshake
- oauth: Identity provider authorization code flow and refresh
- routes: Public authentication endpoints (/api/login, /api/auth/*, /api/logout)

The router is imported from ``sgo_relay.auth.routes`` directly by the
application factory.
"""
