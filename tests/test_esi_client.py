from __future__ import annotations

import datetime as dt

import httpx
import pytest

from corpsync.errors import AuthError, InsufficientScope, RateLimitExceeded, TransientError
from corpsync.models.corporation_token import CorporationToken
from corpsync.services.esi_client import RetryPolicy

from tests.conftest import CORPORATION_ID, esi_response, make_esi_client

MEMBERS_PATH = f"/corporations/{CORPORATION_ID}/members/"


@pytest.fixture
def token(clock) -> CorporationToken:
    return CorporationToken(
        tenant_id=CORPORATION_ID,
        access_token="access-1",
        refresh_token="refresh-1",
        expires_at=clock() + dt.timedelta(minutes=20),
        scopes=[],
        is_valid=True,
    )


class TestRetryPolicy:
    """Backoff schedule."""

    def test_backoff_doubles_and_caps(self):
        policy = RetryPolicy(base_delay=0.5, multiplier=2.0, max_delay=3.0)
        assert [policy.backoff_delay(n) for n in range(1, 6)] == [0.5, 1.0, 2.0, 3.0, 3.0]


class TestRateLimits:
    """420/429 handling."""

    @pytest.mark.asyncio
    async def test_retry_after_is_honored_then_succeeds(self, token, clock, fake_sleep):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(429, headers={"Retry-After": "5"})
            return esi_response([1, 2, 3])

        client = make_esi_client(handler, clock, fake_sleep)
        page = await client.request("GET", MEMBERS_PATH, token)

        assert fake_sleep.calls == [5.0]
        assert len(calls) == 2
        assert page.items == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_error_limit_reset_header_used_for_420(self, token, clock, fake_sleep):
        responses = [httpx.Response(420, headers={"X-ESI-Error-Limit-Reset": "12"}), esi_response([])]

        client = make_esi_client(lambda request: responses.pop(0), clock, fake_sleep)
        await client.request("GET", MEMBERS_PATH, token)

        assert fake_sleep.calls == [12.0]

    @pytest.mark.asyncio
    async def test_persistent_rate_limit_raises(self, token, clock, fake_sleep):
        client = make_esi_client(lambda request: httpx.Response(429), clock, fake_sleep)

        with pytest.raises(RateLimitExceeded) as exc_info:
            await client.request("GET", MEMBERS_PATH, token)

        assert fake_sleep.calls == [60.0, 60.0, 60.0]
        assert exc_info.value.http_status == 429
        assert exc_info.value.category == "api"


class TestTransientFailures:
    """5xx and transport errors."""

    @pytest.mark.asyncio
    async def test_server_errors_exhaust_retries(self, token, clock, fake_sleep):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503, text="upstream down")

        client = make_esi_client(handler, clock, fake_sleep)
        with pytest.raises(TransientError) as exc_info:
            await client.request("GET", MEMBERS_PATH, token)

        assert len(calls) == 4
        assert fake_sleep.calls == [0.5, 1.0, 2.0]
        assert exc_info.value.category == "api"
        assert exc_info.value.retry_attempt == 4

    @pytest.mark.asyncio
    async def test_server_error_then_recovery(self, token, clock, fake_sleep):
        responses = [httpx.Response(502), esi_response([7])]

        client = make_esi_client(lambda request: responses.pop(0), clock, fake_sleep)
        page = await client.request("GET", MEMBERS_PATH, token)

        assert page.items == [7]
        assert fake_sleep.calls == [0.5]

    @pytest.mark.asyncio
    async def test_network_error_is_network_category(self, token, clock, fake_sleep):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = make_esi_client(handler, clock, fake_sleep)
        with pytest.raises(TransientError) as exc_info:
            await client.request("GET", MEMBERS_PATH, token)

        assert exc_info.value.category == "network"
        assert exc_info.value.http_status is None


class TestResponses:
    """Auth, pagination and conditional requests."""

    @pytest.mark.asyncio
    async def test_sends_bearer_and_page(self, token, clock, fake_sleep):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return esi_response([], **{"X-Pages": "3"})

        client = make_esi_client(handler, clock, fake_sleep)
        page = await client.request("GET", MEMBERS_PATH, token, page=2)

        assert seen[0].headers["Authorization"] == "Bearer access-1"
        assert seen[0].url.params["page"] == "2"
        assert seen[0].url.path == f"/latest{MEMBERS_PATH}"
        assert page.pages == 3
        assert page.next_page == 3

    @pytest.mark.asyncio
    async def test_last_page_has_no_next(self, token, clock, fake_sleep):
        client = make_esi_client(lambda request: esi_response([], **{"X-Pages": "3"}), clock, fake_sleep)
        page = await client.request("GET", MEMBERS_PATH, token, page=3)
        assert page.next_page is None

    @pytest.mark.asyncio
    async def test_not_modified_serves_cached_body(self, token, clock, fake_sleep):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if "If-None-Match" in request.headers:
                return httpx.Response(304)
            return esi_response([{"character_id": 1}], ETag='"v1"')

        client = make_esi_client(handler, clock, fake_sleep)
        first = await client.request("GET", MEMBERS_PATH, token)
        second = await client.request("GET", MEMBERS_PATH, token)

        assert seen[1].headers["If-None-Match"] == '"v1"'
        assert first.not_modified is False
        assert second.not_modified is True
        assert second.items == [{"character_id": 1}]

    @pytest.mark.asyncio
    async def test_forget_drops_cached_etags_for_path(self, token, clock, fake_sleep):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return esi_response([{"character_id": 1}], ETag='"v1"', **{"X-Pages": "2"})

        client = make_esi_client(handler, clock, fake_sleep)
        await client.request("GET", MEMBERS_PATH, token, page=1)
        await client.request("GET", MEMBERS_PATH, token, page=2)
        await client.request("GET", "/corporations/1/assets/", token)

        client.forget(CORPORATION_ID, MEMBERS_PATH)
        await client.request("GET", MEMBERS_PATH, token, page=1)
        await client.request("GET", "/corporations/1/assets/", token)

        assert "If-None-Match" not in seen[3].headers
        assert seen[4].headers["If-None-Match"] == '"v1"'

    @pytest.mark.asyncio
    async def test_unauthorized_raises_auth_error(self, token, clock, fake_sleep):
        client = make_esi_client(lambda request: httpx.Response(401), clock, fake_sleep)
        with pytest.raises(AuthError) as exc_info:
            await client.request("GET", MEMBERS_PATH, token)
        assert exc_info.value.category == "auth"

    @pytest.mark.asyncio
    async def test_forbidden_raises_insufficient_scope(self, token, clock, fake_sleep):
        client = make_esi_client(lambda request: httpx.Response(403, json={"error": "token not valid for scope"}), clock, fake_sleep)
        with pytest.raises(InsufficientScope):
            await client.request("GET", MEMBERS_PATH, token)

    @pytest.mark.asyncio
    async def test_expiring_token_rejected_without_request(self, token, clock, fake_sleep):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return esi_response([])

        clock.advance(minutes=16)  # inside the five minute margin
        client = make_esi_client(handler, clock, fake_sleep)
        with pytest.raises(AuthError):
            await client.request("GET", MEMBERS_PATH, token)
        assert calls == []
