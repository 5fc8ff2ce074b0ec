"""
Async ESI client: one authenticated request per call.

The client handles everything that is about a *single* page: bearer auth,
rate-limit waits (420/429), exponential backoff on 5xx / transport errors,
and ETag conditional requests. Looping over pages is the caller's job so a
failed page can be retried on its own.
"""
from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
from pydantic import BaseModel, Field

from corpsync.config import ESI_BASE_URL, ESI_USER_AGENT, TOKEN_EXPIRY_MARGIN_SECONDS
from corpsync.db import utcnow
from corpsync.errors import (
    AuthError,
    InsufficientScope,
    InternalError,
    RateLimitExceeded,
    TransientError,
    ValidationError,
)

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUSES = (420, 429)


class RetryPolicy:
    """Retry/backoff settings shared by every category."""

    def __init__(
        self,
        max_attempts: int = 4,
        base_delay: float = 0.5,
        multiplier: float = 2.0,
        max_delay: float = 30.0,
        max_rate_limit_retries: int = 3,
        default_rate_limit_delay: float = 60.0,
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.max_rate_limit_retries = max_rate_limit_retries
        self.default_rate_limit_delay = default_rate_limit_delay

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        delay = self.base_delay * (self.multiplier ** (attempt - 1))
        return min(delay, self.max_delay)


class EsiPage(BaseModel):
    items: List[Any] = Field(default_factory=list)
    page: int = 1
    pages: int = 1
    next_page: Optional[int] = None
    etag: Optional[str] = None
    not_modified: bool = False


class _CachedPage:
    def __init__(self, etag: str, items: List[Any], pages: int):
        self.etag = etag
        self.items = items
        self.pages = pages


class EsiClient:
    """Thin async wrapper over httpx for ESI list endpoints."""

    def __init__(
        self,
        base_url: str = ESI_BASE_URL,
        policy: Optional[RetryPolicy] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], dt.datetime] = utcnow,
        timeout: float = 30,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._sleep = sleep
        self._clock = clock
        self._etags: Dict[Tuple[Any, ...], _CachedPage] = {}

    async def request(
        self,
        method: str,
        path: str,
        token,
        page: Optional[int] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> EsiPage:
        """
        Issue one request and return one page.

        Args:
            method: HTTP method, normally "GET".
            path: Path relative to the ESI base URL.
            token: CorporationToken (anything with access_token / expires_at / tenant_id).
            page: 1-based page number, or None for the first / only page.
            params: Extra query parameters.

        Raises:
            AuthError, InsufficientScope, RateLimitExceeded, TransientError,
            ValidationError, InternalError.
        """
        self._check_token(token)

        query = dict(params or {})
        if page is not None:
            query["page"] = page
        current_page = page or 1

        cache_key = (getattr(token, "tenant_id", None), method.upper(), path, current_page)
        headers = {
            "Authorization": f"Bearer {token.access_token}",
            "Accept": "application/json",
            "User-Agent": ESI_USER_AGENT,
        }
        cached = self._etags.get(cache_key)
        if cached is not None:
            headers["If-None-Match"] = cached.etag

        attempts = 0
        rate_limited = 0
        while True:
            try:
                response = await self._client.request(method, path, params=query, headers=headers)
            except httpx.HTTPError as exc:
                attempts += 1
                if attempts >= self.policy.max_attempts:
                    raise TransientError(
                        f"ESI request {method} {path} failed after {attempts} attempts: {exc}",
                        retry_attempt=attempts,
                        request_url=path,
                    ) from exc
                delay = self.policy.backoff_delay(attempts)
                logger.warning(
                    f"Network error on {path} (attempt {attempts}), retrying in {delay:.1f}s: {exc}"
                )
                await self._sleep(delay)
                continue

            status = response.status_code

            if status in RATE_LIMIT_STATUSES:
                rate_limited += 1
                if rate_limited > self.policy.max_rate_limit_retries:
                    raise RateLimitExceeded(
                        f"ESI rate limit on {path} persisted after {rate_limited - 1} waits",
                        http_status=status,
                        retry_attempt=rate_limited,
                        request_url=path,
                    )
                delay = self._rate_limit_delay(response)
                logger.warning(f"Rate limited on {path} ({status}); waiting {delay:.0f}s")
                await self._sleep(delay)
                continue

            if status >= 500:
                attempts += 1
                if attempts >= self.policy.max_attempts:
                    raise TransientError(
                        f"ESI request {method} {path} returned {status} after {attempts} attempts",
                        http_status=status,
                        retry_attempt=attempts,
                        request_url=path,
                        details=response.text[:500],
                    )
                delay = self.policy.backoff_delay(attempts)
                logger.warning(f"ESI {status} on {path} (attempt {attempts}), retrying in {delay:.1f}s")
                await self._sleep(delay)
                continue

            return self._build_page(response, path, current_page, cache_key, cached)

    def _check_token(self, token) -> None:
        if token is None or not getattr(token, "access_token", None):
            raise AuthError("No access token available for ESI request")
        margin = dt.timedelta(seconds=TOKEN_EXPIRY_MARGIN_SECONDS)
        if token.expires_at - margin <= self._clock():
            raise AuthError(
                f"Access token for tenant {getattr(token, 'tenant_id', None)} is expired; refresh before calling"
            )

    def _rate_limit_delay(self, response: httpx.Response) -> float:
        for header in ("Retry-After", "X-ESI-Error-Limit-Reset"):
            value = response.headers.get(header)
            if value is None:
                continue
            try:
                return max(0.0, float(value))
            except ValueError:
                continue
        return self.policy.default_rate_limit_delay

    def _build_page(
        self,
        response: httpx.Response,
        path: str,
        current_page: int,
        cache_key: Tuple[Any, ...],
        cached: Optional[_CachedPage],
    ) -> EsiPage:
        status = response.status_code

        if status == 304:
            if cached is None:
                raise InternalError(f"ESI answered 304 for {path} without a cached copy", http_status=304)
            pages = _parse_pages(response, default=cached.pages)
            return EsiPage(
                items=list(cached.items),
                page=current_page,
                pages=pages,
                next_page=current_page + 1 if current_page < pages else None,
                etag=cached.etag,
                not_modified=True,
            )

        if status == 401:
            raise AuthError(f"ESI rejected the access token for {path}", http_status=401, request_url=path)
        if status == 403:
            raise InsufficientScope(
                f"ESI denied {path}: token lacks a required scope or role",
                http_status=403,
                request_url=path,
                details=response.text[:500],
            )
        if status >= 400:
            raise InternalError(
                f"ESI request {path} failed with {status}",
                http_status=status,
                request_url=path,
                details=response.text[:500],
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ValidationError(f"ESI returned a non-JSON body for {path}", http_status=status, request_url=path) from exc

        items = payload if isinstance(payload, list) else [payload]
        pages = _parse_pages(response, default=1)

        etag = response.headers.get("ETag")
        if etag:
            self._etags[cache_key] = _CachedPage(etag, items, pages)

        return EsiPage(
            items=items,
            page=current_page,
            pages=pages,
            next_page=current_page + 1 if current_page < pages else None,
            etag=etag,
        )

    def forget(self, tenant_id: Optional[int], path: str) -> None:
        """Drop cached ETags for every page of ``path`` fetched with ``tenant_id``'s token."""
        for key in [k for k in self._etags if k[0] == tenant_id and k[2] == path]:
            del self._etags[key]

    def clear_cache(self) -> None:
        self._etags.clear()

    async def close(self) -> None:
        """Clean up resources."""
        if self._owns_client:
            await self._client.aclose()


def _parse_pages(response: httpx.Response, default: int) -> int:
    try:
        return max(1, int(response.headers.get("X-Pages", default)))
    except (TypeError, ValueError):
        return default
