"""Pydantic models for OAuth-authenticated users."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class UserToken(BaseModel):
    """Persisted OAuth tokens for one external user.

    Attributes:
        twitter_id: External user id, the store key
        twitter_username: External user handle
        access_token: Current bearer token
        refresh_token: Refresh token, when offline access was granted
        token_expires_at: Access token expiry, when known
        updated_at: Time the entry was last written
    """

    model_config = ConfigDict(extra="ignore")

    twitter_id: str = Field(..., description="External user id")
    twitter_username: str = Field(default="", description="External handle")
    access_token: str = Field(..., description="Bearer token")
    refresh_token: str | None = Field(default=None, description="Refresh token")
    token_expires_at: datetime | None = Field(
        default=None, description="Access token expiry"
    )
    updated_at: datetime | None = Field(default=None, description="Write time")

    def is_expired(self, now: datetime | None = None) -> bool:
        """Return True when the access token has a known, passed expiry."""
        if self.token_expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now >= self.token_expires_at


class TokenGrant(BaseModel):
    """Token endpoint response for a code exchange or refresh."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    scope: str | None = None
    token_type: str = "bearer"


class AuthorizationRequest(BaseModel):
    """PKCE authorization URL together with the values the callback checks."""

    url: str
    state: str
    code_verifier: str
