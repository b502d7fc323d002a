"""
Authenticated client for the game platform API.

Every call takes its bearer token from the TokenManager and a slot from the
RateLimiter. A 401/403 triggers exactly one forced token refresh and one
retry; a second rejection surfaces as AuthFetchError.
"""
import logging
from typing import Any
from urllib.parse import quote

import httpx

from esports_ingest.config import get_settings
from esports_ingest.services.platform_auth import PlatformAuthError
from esports_ingest.services.rate_limiter import RateLimiter
from esports_ingest.services.sync.base import (
    RETRYABLE_EXCEPTIONS,
    check_response,
    translate_transport_error,
)
from esports_ingest.services.sync.errors import AuthFetchError, UnparsableItemError
from esports_ingest.services.token_manager import TokenManager

logger = logging.getLogger(__name__)

EVENTS_DOWNLOAD_PATH = "/api/v1/events/Fortnite/download/{account_id}"
EVENT_WINDOWS_PATH = "/api/v1/events/Fortnite/{event_id}/windows"
ACCOUNT_LOOKUP_PATH = "/account/api/public/account/displayName/{display_name}"

EVENT_REGIONS = ("NAE", "NAW", "EU", "BR", "OCE", "ASIA", "ME")


class PlatformClient:
    """
    Bearer-authenticated GETs against the events and account services.

    Args:
        token_manager: Source of access tokens
        rate_limiter: Shared per-host limiter
        http: Injected HTTP client (tests pass one on a MockTransport)
    """

    def __init__(
        self,
        token_manager: TokenManager,
        rate_limiter: RateLimiter,
        http: httpx.AsyncClient | None = None,
        events_base_url: str | None = None,
        account_base_url: str | None = None,
    ):
        settings = get_settings()
        self.token_manager = token_manager
        self.rate_limiter = rate_limiter
        self.http = http or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
        self.events_base_url = (events_base_url or settings.platform_events_base_url).rstrip("/")
        self.account_base_url = (account_base_url or settings.platform_account_base_url).rstrip("/")

    @property
    def events_host(self) -> str:
        return httpx.URL(self.events_base_url).host

    async def _send(self, url: str, token: str, params: dict | None) -> httpx.Response:
        await self.rate_limiter.acquire(httpx.URL(url).host)
        try:
            return await self.http.get(
                url,
                params=params,
                headers={"Authorization": f"bearer {token}", "Content-Type": "application/json"},
            )
        except RETRYABLE_EXCEPTIONS as e:
            raise translate_transport_error(e, httpx.URL(url).host) from e

    async def get_json(self, url: str, params: dict | None = None, *, item_id: str | None = None) -> Any:
        """GET ``url`` with a bearer token; refresh and retry once on 401/403."""
        host = httpx.URL(url).host
        try:
            token = await self.token_manager.get_token()
        except httpx.HTTPError as e:
            raise translate_transport_error(e, host) from e
        response = await self._send(url, token, params)

        if response.status_code in (401, 403):
            logger.warning(f"Auth error {response.status_code} from {host}, refreshing token")
            try:
                token = await self.token_manager.refresh()
            except (PlatformAuthError, httpx.HTTPError) as e:
                raise AuthFetchError(
                    f"Token refresh failed after {response.status_code} from {host}: {e}",
                    status_code=response.status_code,
                ) from e
            response = await self._send(url, token, params)

        check_response(response, host_key=host, rate_limiter=self.rate_limiter, item_id=item_id)
        try:
            return response.json()
        except ValueError as e:
            raise UnparsableItemError(f"Non-JSON response from {host} for {item_id or url}") from e

    # ==================== Events ====================

    async def download_events(self, region: str) -> list[dict[str, Any]]:
        """Events visible to the token's account in one region."""
        account_id = self.token_manager.account_id
        if not account_id:
            # get_token() resolves the account id as a side effect
            await self.token_manager.get_token()
            account_id = self.token_manager.account_id
        url = f"{self.events_base_url}{EVENTS_DOWNLOAD_PATH.format(account_id=account_id)}"
        data = await self.get_json(url, params={"region": region}, item_id=f"events:{region}")
        events = data.get("events") if isinstance(data, dict) else None
        return events or []

    async def get_event_windows(self, event_id: str) -> list[dict[str, Any]]:
        url = f"{self.events_base_url}{EVENT_WINDOWS_PATH.format(event_id=quote(event_id, safe=''))}"
        data = await self.get_json(url, item_id=event_id)
        if isinstance(data, dict):
            return data.get("eventWindows") or []
        return data or []

    # ==================== Accounts ====================

    async def lookup_account(self, display_name: str) -> dict[str, Any]:
        """Resolve a display name to ``{"id", "displayName"}``."""
        path = ACCOUNT_LOOKUP_PATH.format(display_name=quote(display_name, safe=""))
        return await self.get_json(f"{self.account_base_url}{path}", item_id=display_name)
