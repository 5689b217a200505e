"""
Data Models Module

This module defines Pydantic models for request/response validation
and for the credentials held server-side in the session store.

Models are organized by functional area:
- Session credentials (password-session and federated-session variants)
- Pending authorization (OAuth state store entries)
- Request/response bodies of the relay API
"""

from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field


# ============================================================================
# Session Credentials
# ============================================================================

class PasswordCredentials(BaseModel):
    """Credentials of a session established by username/password login."""
    kind: Literal["password"] = "password"
    cookies: Dict[str, str] = Field(default_factory=dict, description="Upstream cookie jar")
    base_url: str = Field(..., description="Resolved school system base URL")
    access_token: str = Field(..., description="School system access token ('at')")
    user_id: Optional[Union[int, str]] = Field(None, description="Upstream user identifier")
    profile: Optional[Dict[str, Any]] = Field(None, description="Raw upstream accountInfo payload")


class FederatedProfile(BaseModel):
    """Profile record normalized from the identity provider payload."""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    middle_name: Optional[str] = None
    birth_date: Optional[str] = None
    snils: Optional[str] = Field(None, description="National ID")
    email: Optional[str] = None
    phone: Optional[str] = None


class FederatedCredentials(BaseModel):
    """Credentials of a session established through the identity provider."""
    kind: Literal["federated"] = "federated"
    access_token: str
    refresh_token: Optional[str] = None
    subject_id: Optional[str] = None
    profile: FederatedProfile = Field(default_factory=FederatedProfile)
    telegram_user_id: Optional[str] = Field(None, description="Originating client-platform user id")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


SessionCredentials = Union[PasswordCredentials, FederatedCredentials]


# ============================================================================
# OAuth State
# ============================================================================

class PendingAuthorization(BaseModel):
    """Context kept between OAuth initiation and callback."""
    code_verifier: str
    created_at: float = Field(..., description="Creation time (store clock, seconds)")
    telegram_user_id: Optional[str] = None


# ============================================================================
# API Models
# ============================================================================

class LoginRequest(BaseModel):
    """Request model for username/password login."""
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    region: Optional[str] = Field(None, description="Region code, e.g. 'msk' or 'spb'")


class LoginResponse(BaseModel):
    success: bool = True
    sessionId: str
    user: Optional[Dict[str, Any]] = None


class AuthUrlResponse(BaseModel):
    success: bool = True
    authUrl: str


class RefreshResponse(BaseModel):
    success: bool = True


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    sessions: int = Field(..., description="Number of live sessions")
    pendingAuthorizations: int = Field(0, description="Number of pending OAuth flows")
