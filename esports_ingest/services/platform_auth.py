"""
Credential exchange against the game platform account service.

Device-auth flow:
    POST {account}/account/api/oauth/token
        grant_type=device_auth, device_id, account_id, secret
        Authorization: basic <client credentials>
    -> {"access_token", "expires_at", "refresh_token", "refresh_expires_at", "account_id"}

The same endpoint with grant_type=refresh_token trades a refresh token for a
new access token. Failures are classified so the TokenManager can tell a
dead credential (regenerate out-of-band) from a locked account.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from esports_ingest.config import get_settings
from esports_ingest.services.rate_limiter import RateLimiter
from esports_ingest.services.sync.base import RETRYABLE_EXCEPTIONS, parse_datetime
from esports_ingest.utils.timestamps import utcnow

logger = logging.getLogger(__name__)

OAUTH_TOKEN_PATH = "/account/api/oauth/token"
OAUTH_VERIFY_PATH = "/account/api/oauth/verify"
OAUTH_SESSION_KILL_PATH = "/account/api/oauth/sessions/kill"


# ==================== Credential & token state ====================

class CredentialOrigin(str, enum.Enum):
    static_config = "static-config"
    persisted_store = "persisted-store"


@dataclass(frozen=True)
class Credential:
    """Long-lived device-auth material. Rotation supersedes, never mutates."""

    source_id: str
    device_id: str
    shared_secret: str
    subject_id: str
    origin: CredentialOrigin

    def same_material(self, other: "Credential") -> bool:
        return (self.device_id, self.subject_id) == (other.device_id, other.subject_id)

    def __repr__(self) -> str:
        return (
            f"Credential(source_id={self.source_id!r}, subject_id={self.subject_id!r}, "
            f"origin={self.origin.value!r})"
        )


@dataclass(frozen=True)
class TokenState:
    access_token: str
    issued_account_id: str
    expires_at: datetime
    refresh_token: str | None = None
    refresh_expires_at: datetime | None = None

    def is_expiring(self, now: datetime, buffer: timedelta) -> bool:
        return now >= self.expires_at - buffer

    def can_refresh(self, now: datetime) -> bool:
        if not self.refresh_token:
            return False
        return self.refresh_expires_at is None or now < self.refresh_expires_at

    @classmethod
    def from_response(cls, data: dict) -> "TokenState":
        expires_at = parse_datetime(data.get("expires_at"))
        if expires_at is None:
            expires_at = utcnow() + timedelta(seconds=int(data.get("expires_in", 0)))
        refresh_expires_at = parse_datetime(data.get("refresh_expires_at"))
        if refresh_expires_at is None and data.get("refresh_expires"):
            refresh_expires_at = utcnow() + timedelta(seconds=int(data["refresh_expires"]))
        return cls(
            access_token=data["access_token"],
            issued_account_id=data.get("account_id", ""),
            expires_at=expires_at,
            refresh_token=data.get("refresh_token"),
            refresh_expires_at=refresh_expires_at,
        )


# ==================== Errors ====================

class PlatformAuthError(Exception):
    """Credential exchange failed."""

    def __init__(self, message: str, *, status_code: int | None = None, error_code: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class NoCredentialsError(PlatformAuthError):
    pass


class InvalidCredentialsError(PlatformAuthError):
    """Device auth is invalid or expired; must be regenerated out-of-band."""


class UnauthorizedError(PlatformAuthError):
    pass


class ForbiddenError(PlatformAuthError):
    """The account is locked or banned."""


def classify_auth_failure(response: httpx.Response, context: str) -> PlatformAuthError:
    status = response.status_code
    try:
        body = response.json()
    except ValueError:
        body = {}
    error_code = body.get("errorCode") if isinstance(body, dict) else None
    detail = (body.get("errorMessage") if isinstance(body, dict) else None) or response.text[:200]
    message = f"{context}: {status} {error_code or ''} {detail}".strip()

    if status == 400 or (error_code and "invalid_grant" in error_code):
        return InvalidCredentialsError(message, status_code=status, error_code=error_code)
    if status == 401:
        return UnauthorizedError(message, status_code=status, error_code=error_code)
    if status == 403:
        return ForbiddenError(message, status_code=status, error_code=error_code)
    return PlatformAuthError(message, status_code=status, error_code=error_code)


# ==================== Client ====================

class PlatformAuthClient:
    """HTTP client for the platform OAuth endpoints."""

    def __init__(
        self,
        http: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
        base_url: str | None = None,
        basic_auth: str | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.platform_account_base_url).rstrip("/")
        self.basic_auth = basic_auth if basic_auth is not None else settings.platform_client_basic_auth
        self.http = http or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
        self.rate_limiter = rate_limiter
        self.host_key = httpx.URL(self.base_url).host

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        retry=retry_if_exception_type(RETRYABLE_EXCEPTIONS),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _make_request(self, method: str, path: str, **kwargs) -> httpx.Response:
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire(self.host_key)
        return await self.http.request(method, f"{self.base_url}{path}", **kwargs)

    async def _token_grant(self, form: dict[str, str], context: str) -> TokenState:
        response = await self._make_request(
            "POST",
            OAUTH_TOKEN_PATH,
            data=form,
            headers={"Authorization": self.basic_auth},
        )
        if response.status_code != 200:
            raise classify_auth_failure(response, context)
        return TokenState.from_response(response.json())

    async def exchange_device_auth(self, credential: Credential) -> TokenState:
        """Trade device-auth credentials for a bearer token."""
        return await self._token_grant(
            {
                "grant_type": "device_auth",
                "device_id": credential.device_id,
                "account_id": credential.subject_id,
                "secret": credential.shared_secret,
            },
            f"Device auth exchange failed for {credential.subject_id}",
        )

    async def exchange_refresh_token(self, refresh_token: str) -> TokenState:
        return await self._token_grant(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            "Refresh token exchange failed",
        )

    async def verify_token(self, access_token: str) -> bool:
        response = await self._make_request(
            "GET",
            OAUTH_VERIFY_PATH,
            headers={"Authorization": f"bearer {access_token}"},
        )
        return response.status_code == 200

    async def kill_sessions(self, access_token: str) -> None:
        response = await self._make_request(
            "DELETE",
            OAUTH_SESSION_KILL_PATH,
            params={"killType": "ALL"},
            headers={"Authorization": f"bearer {access_token}"},
        )
        if response.status_code >= 400:
            raise classify_auth_failure(response, "Failed to kill sessions")
