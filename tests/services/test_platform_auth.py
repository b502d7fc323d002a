from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from esports_ingest.services.platform_auth import (
    OAUTH_TOKEN_PATH,
    ForbiddenError,
    InvalidCredentialsError,
    PlatformAuthClient,
    PlatformAuthError,
    TokenState,
    UnauthorizedError,
)

TOKEN_RESPONSE = {
    "access_token": "eg1~abc",
    "expires_in": 7200,
    "expires_at": "2030-01-01T00:00:00.000Z",
    "refresh_token": "eg1~refresh",
    "refresh_expires": 28800,
    "refresh_expires_at": "2030-01-01T06:00:00.000Z",
    "account_id": "acc",
}


def _client(handler) -> PlatformAuthClient:
    return PlatformAuthClient(
        http=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        base_url="https://account.test",
        basic_auth="basic Y2xpZW50OnNlY3JldA==",
    )


@pytest.mark.asyncio
class TestTokenGrant:
    async def test_device_auth_grant(self, credential_factory):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json=TOKEN_RESPONSE)

        token = await _client(handler).exchange_device_auth(credential_factory())

        assert seen["path"] == OAUTH_TOKEN_PATH
        assert seen["auth"] == "basic Y2xpZW50OnNlY3JldA=="
        assert seen["form"]["grant_type"] == ["device_auth"]
        assert seen["form"]["account_id"] == ["acc"]
        assert token.access_token == "eg1~abc"
        assert token.issued_account_id == "acc"
        assert token.expires_at == datetime(2030, 1, 1, tzinfo=timezone.utc)
        assert token.refresh_token == "eg1~refresh"

    async def test_refresh_token_grant(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json=TOKEN_RESPONSE)

        await _client(handler).exchange_refresh_token("eg1~refresh")

        assert seen["form"] == {"grant_type": ["refresh_token"], "refresh_token": ["eg1~refresh"]}

    @pytest.mark.parametrize(
        "status, body, error",
        [
            (400, {"errorCode": "errors.com.epicgames.account.oauth.invalid_grant"}, InvalidCredentialsError),
            (401, {"errorCode": "errors.com.epicgames.common.authentication.authentication_failed"}, UnauthorizedError),
            (403, {"errorCode": "errors.com.epicgames.account.account_locked"}, ForbiddenError),
        ],
    )
    async def test_failures_are_classified(self, credential_factory, status, body, error):
        client = _client(lambda request: httpx.Response(status, json=body))

        with pytest.raises(error) as exc_info:
            await client.exchange_device_auth(credential_factory())

        assert exc_info.value.status_code == status
        assert exc_info.value.error_code == body["errorCode"]

    async def test_unexpected_status_is_generic_auth_error(self, credential_factory):
        client = _client(lambda request: httpx.Response(500, text="oops"))

        with pytest.raises(PlatformAuthError) as exc_info:
            await client.exchange_device_auth(credential_factory())

        assert type(exc_info.value) is PlatformAuthError

    async def test_verify_and_kill_sessions(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append((request.method, request.url.path, request.headers["Authorization"]))
            return httpx.Response(200 if request.method == "GET" else 204)

        client = _client(handler)

        assert await client.verify_token("tok") is True
        await client.kill_sessions("tok")

        assert calls == [
            ("GET", "/account/api/oauth/verify", "bearer tok"),
            ("DELETE", "/account/api/oauth/sessions/kill", "bearer tok"),
        ]


def test_token_state_expiry_rules():
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)
    token = TokenState(
        access_token="t",
        issued_account_id="acc",
        expires_at=now + timedelta(minutes=10),
        refresh_token="r",
        refresh_expires_at=now + timedelta(hours=1),
    )

    assert not token.is_expiring(now, timedelta(minutes=5))
    assert token.is_expiring(now + timedelta(minutes=6), timedelta(minutes=5))
    assert token.can_refresh(now)
    assert not token.can_refresh(now + timedelta(hours=2))


def test_token_state_falls_back_to_relative_expiry():
    token = TokenState.from_response({"access_token": "t", "expires_in": 60})

    assert token.refresh_token is None
    assert timedelta(0) < token.expires_at - datetime.now(timezone.utc) <= timedelta(seconds=60)
