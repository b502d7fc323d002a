"""
Bearer token lifecycle for the game platform API.

One TokenManager is built at process start and handed to every job that
talks to the authenticated API. It resolves device-auth credentials from the
static configuration first and the persisted credential store second,
exchanges them for a token, and refreshes ahead of expiry.

Concurrent ``get_token()`` callers that find the token expiring share a
single in-flight refresh; the shared handle is dropped as soon as it
settles, so a failed refresh never blocks the next attempt.

States::

    UNINITIALIZED -> INITIALIZING -> READY -> REFRESHING -> READY | FAILED
    FAILED is left again by the next get_token()/refresh()
"""
import asyncio
import enum
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Protocol

import httpx
from sqlalchemy.exc import SQLAlchemyError

from esports_ingest.config import Settings
from esports_ingest.services.platform_auth import (
    Credential,
    CredentialOrigin,
    NoCredentialsError,
    PlatformAuthError,
    TokenState,
)
from esports_ingest.utils.timestamps import utcnow

logger = logging.getLogger(__name__)

# Exchange failures that let resolution move on to the next credential
EXCHANGE_FAILURES = (PlatformAuthError, httpx.HTTPError)

# Distinct credentials tried per resolution attempt
MAX_CREDENTIALS_PER_ATTEMPT = 2


class CredentialExchanger(Protocol):
    async def exchange_device_auth(self, credential: Credential) -> TokenState: ...

    async def exchange_refresh_token(self, refresh_token: str) -> TokenState: ...

    async def verify_token(self, access_token: str) -> bool: ...

    async def kill_sessions(self, access_token: str) -> None: ...


class CredentialSource(Protocol):
    async def find_active_most_recently_used(self, exclude: set[str] | None = None) -> Credential | None: ...

    async def mark_used(self, source_id: str) -> None: ...


class TokenManagerState(str, enum.Enum):
    uninitialized = "uninitialized"
    initializing = "initializing"
    ready = "ready"
    refreshing = "refreshing"
    failed = "failed"


def static_credential_from_settings(settings: Settings) -> Credential | None:
    """Device-auth credential from env/.env, if all three parts are set."""
    if not (settings.platform_device_id and settings.platform_account_id and settings.platform_device_secret):
        return None
    return Credential(
        source_id="settings",
        device_id=settings.platform_device_id,
        shared_secret=settings.platform_device_secret,
        subject_id=settings.platform_account_id,
        origin=CredentialOrigin.static_config,
    )


class TokenManager:
    """
    Owns the outbound bearer-token session.

    Args:
        exchanger: Performs credential and refresh-token exchanges
        static_credential: Highest-priority credential (from configuration)
        credential_store: Persisted credentials, consulted after the static one
        refresh_buffer: Refresh this long before the token expires
        now: Time source for expiry checks
    """

    def __init__(
        self,
        exchanger: CredentialExchanger,
        *,
        static_credential: Credential | None = None,
        credential_store: CredentialSource | None = None,
        refresh_buffer: timedelta = timedelta(minutes=5),
        now: Callable[[], datetime] = utcnow,
    ):
        self.exchanger = exchanger
        self.static_credential = static_credential
        self.credential_store = credential_store
        self.refresh_buffer = refresh_buffer
        self.now = now

        self.state = TokenManagerState.uninitialized
        self.last_error: str | None = None
        self._token: TokenState | None = None
        self._credential: Credential | None = None
        self._pending: asyncio.Task | None = None
        # Bumped by reset(); an in-flight exchange from an older generation is discarded
        self._generation = 0

    # ==================== Public API ====================

    @property
    def is_ready(self) -> bool:
        return self._token is not None and self.state == TokenManagerState.ready

    @property
    def account_id(self) -> str | None:
        if self._token is not None and self._token.issued_account_id:
            return self._token.issued_account_id
        if self._credential is not None:
            return self._credential.subject_id
        if self.static_credential is not None:
            return self.static_credential.subject_id
        return None

    def token_info(self) -> dict | None:
        """Expiry of the cached token, or None when there is none."""
        if self._token is None:
            return None
        remaining = (self._token.expires_at - self.now()).total_seconds()
        return {
            "expires_at": self._token.expires_at,
            "expires_in_seconds": max(0.0, remaining),
            "account_id": self._token.issued_account_id,
        }

    async def initialize(self) -> None:
        """
        Resolve credentials and obtain the first token.

        Returns quietly (state FAILED, last_error "no credentials") when no
        credential source has anything; exchange failures propagate.
        """
        if self._token is not None:
            return
        await self._single_flight(self._do_initialize)

    async def get_token(self) -> str:
        """Return a valid access token, refreshing first if it is about to expire."""
        if self._token is None:
            await self.initialize()
            if self._token is None:
                raise NoCredentialsError(
                    f"No valid token available: {self.last_error or 'device auth not configured'}"
                )

        if self._token.is_expiring(self.now(), self.refresh_buffer):
            logger.info("Token expired or expiring soon, refreshing")
            return await self.refresh()

        return self._token.access_token

    async def refresh(self) -> str:
        """Force a refresh; concurrent callers share one exchange."""
        token = await self._single_flight(self._do_refresh)
        if token is None:
            raise NoCredentialsError(
                f"No valid token available: {self.last_error or 'device auth not configured'}"
            )
        return token

    async def verify(self) -> bool:
        """Ask the platform whether the cached token is still accepted."""
        if self._token is None:
            return False
        return await self.exchanger.verify_token(self._token.access_token)

    def reset(self) -> None:
        """Drop token state and any pending refresh handle."""
        self._generation += 1
        self._token = None
        self._credential = None
        self._pending = None
        self.state = TokenManagerState.uninitialized

    async def logout(self) -> None:
        """Kill the remote session (best effort), then reset."""
        if self._token is not None:
            try:
                await self.exchanger.kill_sessions(self._token.access_token)
            except EXCHANGE_FAILURES as e:
                logger.warning(f"Failed to kill platform session: {e}")
        self.reset()
        logger.info("Logged out and cleared token")

    # ==================== Single flight ====================

    async def _single_flight(self, factory: Callable[[], Awaitable[str | None]]) -> str | None:
        if self._pending is None:
            task = asyncio.get_running_loop().create_task(factory())
            task.add_done_callback(self._settle)
            self._pending = task
        # shield: a cancelled waiter must not cancel the exchange the others wait on
        return await asyncio.shield(self._pending)

    def _settle(self, task: asyncio.Task) -> None:
        if self._pending is task:
            self._pending = None
        if not task.cancelled():
            # Mark the exception retrieved; waiters re-raise it themselves
            task.exception()

    # ==================== Exchanges ====================

    async def _do_initialize(self) -> str | None:
        generation = self._generation
        self.state = TokenManagerState.initializing
        logger.info("Initializing token manager")
        try:
            token = await self._exchange_with_sources()
        except NoCredentialsError:
            if generation == self._generation:
                self.state = TokenManagerState.failed
                self.last_error = "no credentials"
            logger.warning(
                "Device auth credentials not configured; platform API jobs will not run. "
                "Register one with scripts/register_device_auth.py"
            )
            return None
        except Exception as e:
            if generation == self._generation:
                self.state = TokenManagerState.failed
                self.last_error = f"{e.__class__.__name__}: {e}"
            raise

        if generation != self._generation:
            return None
        self._store_token(token)
        logger.info("Token manager initialized")
        return token.access_token

    async def _do_refresh(self) -> str | None:
        generation = self._generation
        self.state = TokenManagerState.refreshing
        current = self._token
        try:
            token = None
            if current is not None and current.can_refresh(self.now()):
                try:
                    token = await self.exchanger.exchange_refresh_token(current.refresh_token)
                    logger.info("Token refreshed via refresh_token")
                except EXCHANGE_FAILURES as e:
                    logger.warning(f"Refresh token failed, falling back to device auth: {e}")
            if token is None:
                token = await self._exchange_with_sources()
        except Exception as e:
            if generation == self._generation:
                self.state = TokenManagerState.failed
                self.last_error = "no credentials" if isinstance(e, NoCredentialsError) else (
                    f"{e.__class__.__name__}: {e}"
                )
            logger.error(f"Token refresh failed: {e}")
            raise

        if generation != self._generation:
            return None
        self._store_token(token)
        return token.access_token

    async def _exchange_with_sources(self) -> TokenState:
        """
        Exchange the highest-priority credential, falling back to a second
        distinct one if the first is rejected.
        """
        tried: list[Credential] = []
        last_failure: Exception | None = None

        while len(tried) < MAX_CREDENTIALS_PER_ATTEMPT:
            credential = await self._next_credential(tried)
            if credential is None:
                break
            tried.append(credential)
            try:
                token = await self.exchanger.exchange_device_auth(credential)
            except EXCHANGE_FAILURES as e:
                last_failure = e
                self.last_error = f"{e.__class__.__name__}: {e}"
                logger.warning(f"Credential exchange failed for {credential!r}: {e}")
                continue

            self._credential = credential
            if credential.origin == CredentialOrigin.persisted_store and self.credential_store is not None:
                try:
                    await self.credential_store.mark_used(credential.source_id)
                except SQLAlchemyError as e:
                    logger.warning(f"Could not mark credential {credential.source_id} as used: {e}")
            logger.info(f"Token obtained via device auth ({credential.origin.value})")
            return token

        if last_failure is not None:
            raise last_failure
        raise NoCredentialsError("no credentials")

    async def _next_credential(self, tried: list[Credential]) -> Credential | None:
        static = self.static_credential
        if static is not None and not any(static.same_material(c) for c in tried):
            return static

        if self.credential_store is not None:
            exclude = {c.source_id for c in tried if c.origin == CredentialOrigin.persisted_store}
            candidate = await self.credential_store.find_active_most_recently_used(exclude=exclude or None)
            if candidate is not None and not any(candidate.same_material(c) for c in tried):
                return candidate
        return None

    def _store_token(self, token: TokenState) -> None:
        self._token = token
        self.state = TokenManagerState.ready
        self.last_error = None
        minutes = round((token.expires_at - self.now()).total_seconds() / 60)
        logger.info(f"Token for {token.issued_account_id or 'unknown account'} expires in {minutes} minutes")
