"""Twitter/X OAuth 2.0 with PKCE and the local token store.

Authorization state and the PKCE verifier live in the caller's session;
tokens are persisted per external user id in a JSON file under the data
directory.
"""

from __future__ import annotations

import base64
import hashlib
import json
import secrets
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from hangar.lib.errors import ConfigError, OAuthError
from hangar.lib.logging_config import get_logger
from hangar.models.user import AuthorizationRequest, TokenGrant, UserToken

if TYPE_CHECKING:
    from hangar.config.settings import Settings

logger = get_logger(__name__)

AUTHORIZATION_URL = "https://twitter.com/i/oauth2/authorize"
TOKEN_URL = "https://api.twitter.com/2/oauth2/token"
USER_INFO_URL = "https://api.twitter.com/2/users/me"

DEFAULT_SCOPES = ["tweet.read", "tweet.write", "users.read", "offline.access"]


def generate_code_verifier() -> str:
    """Return a random PKCE code verifier (43-128 URL-safe characters)."""
    return secrets.token_urlsafe(64)[:128]


def generate_code_challenge(code_verifier: str) -> str:
    """Return the S256 code challenge for a verifier.

    Example:
        >>> generate_code_challenge("dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk")
        'E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM'
    """
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class TwitterOAuth:
    """OAuth 2.0 authorization-code flow with PKCE against Twitter/X."""

    def __init__(
        self,
        client_id: str,
        redirect_uri: str,
        client_secret: str | None = None,
        scopes: list[str] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the OAuth client.

        Args:
            client_id: OAuth client id
            redirect_uri: Callback URL registered for the client
            client_secret: Client secret for confidential clients
            scopes: Requested scopes (default: read/write tweets, offline access)
            http_client: Optional async HTTP client
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes or list(DEFAULT_SCOPES)
        self._http = http_client

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: httpx.AsyncClient | None = None
    ) -> TwitterOAuth:
        """Build a client from settings.

        Raises:
            ConfigError: If no client id is configured
        """
        if not settings.twitter_client_id:
            raise ConfigError(
                field="twitter_client_id", message="Twitter credentials not configured"
            )
        secret = settings.twitter_client_secret
        return cls(
            client_id=settings.twitter_client_id,
            redirect_uri=settings.oauth_callback_url,
            client_secret=secret.get_secret_value() if secret else None,
            http_client=http_client,
        )

    def generate_authorization_url(self) -> AuthorizationRequest:
        """Build the authorization URL with fresh state and PKCE values."""
        state = secrets.token_urlsafe(32)
        code_verifier = generate_code_verifier()
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(self.scopes),
            "state": state,
            "code_challenge": generate_code_challenge(code_verifier),
            "code_challenge_method": "S256",
        }
        return AuthorizationRequest(
            url=f"{AUTHORIZATION_URL}?{urlencode(params)}",
            state=state,
            code_verifier=code_verifier,
        )

    def _token_request(self, data: dict[str, str]) -> tuple[dict[str, str], dict]:
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        if self.client_secret:
            credentials = base64.b64encode(
                f"{self.client_id}:{self.client_secret}".encode()
            ).decode()
            headers["Authorization"] = f"Basic {credentials}"
        else:
            data["client_id"] = self.client_id
        return data, headers

    async def _post_token(self, data: dict[str, str], action: str) -> TokenGrant:
        body, headers = self._token_request(data)
        try:
            if self._http is not None:
                response = await self._http.post(TOKEN_URL, data=body, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    response = await client.post(TOKEN_URL, data=body, headers=headers)
        except httpx.HTTPError as exc:
            raise OAuthError(f"{action} failed: {exc}") from exc

        if response.status_code != 200:
            raise OAuthError(
                f"{action} failed with status {response.status_code}: {response.text}"
            )
        try:
            return TokenGrant.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise OAuthError(f"{action} returned an invalid response: {exc}") from exc

    async def exchange_code(self, code: str, code_verifier: str) -> TokenGrant:
        """Exchange an authorization code for tokens.

        Raises:
            OAuthError: If the token endpoint rejects the exchange
        """
        grant = await self._post_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
                "code_verifier": code_verifier,
            },
            "Token exchange",
        )
        logger.info("Twitter OAuth token exchange successful")
        return grant

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new access token.

        Raises:
            OAuthError: If the token endpoint rejects the refresh
        """
        return await self._post_token(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            "Token refresh",
        )

    async def get_me(self, access_token: str) -> dict[str, str]:
        """Return the authenticated user's ``id``, ``username`` and ``name``.

        Raises:
            OAuthError: If the lookup fails
        """
        headers = {"Authorization": f"Bearer {access_token}"}
        try:
            if self._http is not None:
                response = await self._http.get(USER_INFO_URL, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    response = await client.get(USER_INFO_URL, headers=headers)
        except httpx.HTTPError as exc:
            raise OAuthError(f"User lookup failed: {exc}") from exc

        if response.status_code != 200:
            raise OAuthError(f"User lookup failed with status {response.status_code}")
        user = response.json().get("data") or {}
        if "id" not in user:
            raise OAuthError("User lookup returned no user id")
        return {
            "id": str(user["id"]),
            "username": user.get("username", ""),
            "name": user.get("name", ""),
        }


class TokenStore:
    """JSON file store of user tokens keyed by external user id."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read_all(self) -> dict[str, dict]:
        if not self.path.exists():
            return {}
        try:
            content = self.path.read_text(encoding="utf-8")
            return json.loads(content) if content.strip() else {}
        except (OSError, json.JSONDecodeError) as exc:
            raise OAuthError(f"Failed to read token store {self.path}: {exc}") from exc

    def get(self, twitter_id: str) -> UserToken | None:
        """Return the stored tokens for a user, or None."""
        with self._lock:
            entry = self._read_all().get(twitter_id)
        return UserToken.model_validate(entry) if entry else None

    def upsert(
        self,
        twitter_id: str,
        username: str,
        grant: TokenGrant,
    ) -> UserToken:
        """Insert or replace the tokens of a user.

        Raises:
            OAuthError: If the store cannot be read or written
        """
        now = datetime.now(timezone.utc)
        user = UserToken(
            twitter_id=twitter_id,
            twitter_username=username,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            token_expires_at=(
                now + timedelta(seconds=grant.expires_in) if grant.expires_in else None
            ),
            updated_at=now,
        )
        with self._lock:
            entries = self._read_all()
            entries[twitter_id] = user.model_dump(mode="json")
            tmp_path = self.path.with_suffix(".tmp")
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                tmp_path.write_text(json.dumps(entries, indent=2), encoding="utf-8")
                tmp_path.replace(self.path)
            except OSError as exc:
                raise OAuthError(
                    f"Failed to write token store {self.path}: {exc}"
                ) from exc
        return user


async def refresh_token_if_needed(
    user: UserToken, oauth: TwitterOAuth, store: TokenStore
) -> UserToken:
    """Refresh an expired access token once.

    Users without a refresh token or a known expiry are returned unchanged.
    A failed refresh is logged and the current tokens are returned.
    """
    if not user.refresh_token or user.token_expires_at is None:
        return user
    if not user.is_expired():
        return user

    try:
        grant = await oauth.refresh(user.refresh_token)
        if grant.refresh_token is None:
            grant = grant.model_copy(update={"refresh_token": user.refresh_token})
        return store.upsert(user.twitter_id, user.twitter_username, grant)
    except OAuthError as exc:
        logger.error(f"Error refreshing token for {user.twitter_id}: {exc.message}")
        return user


def credentials_env(user: UserToken, settings: Settings) -> dict[str, str]:
    """Return the env entries injected into a signed-in user's agent bundle."""
    return {
        "CLIENT_ID": settings.agent_client_id,
        "CLIENT_SECRET": settings.agent_client_secret.get_secret_value(),
        "TWITTER_ACCESS_TOKEN": user.access_token,
        "TWITTER_REFRESH_TOKEN": user.refresh_token or "",
    }
