"""OAuth sign-in and token storage for agent credentials."""

from hangar.auth.oauth import (
    TokenStore,
    TwitterOAuth,
    credentials_env,
    refresh_token_if_needed,
)

__all__ = [
    "TokenStore",
    "TwitterOAuth",
    "credentials_env",
    "refresh_token_if_needed",
]
