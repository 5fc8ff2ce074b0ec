from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import httpx
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from corpsync.config import (
    ESI_CLIENT_ID,
    ESI_CLIENT_SECRET,
    ESI_TOKEN_URL,
    TOKEN_EXPIRY_MARGIN_SECONDS,
)
from corpsync.db import AsyncSessionLocal, utcnow
from corpsync.errors import AuthError, InsufficientScope, StorageError
from corpsync.models.corporation_token import CorporationToken
from corpsync.schemas.data import TokenStatus

logger = logging.getLogger(__name__)

RefreshFn = Callable[[str], Awaitable[Dict[str, Any]]]


# ---------------------------------------------------------------------------
# EVE SSO refresh
# ---------------------------------------------------------------------------


class EveSsoRefresher:
    """Exchanges a refresh token for a new access token at EVE SSO."""

    def __init__(
        self,
        token_url: str = ESI_TOKEN_URL,
        client_id: str = ESI_CLIENT_ID,
        client_secret: str = ESI_CLIENT_SECRET,
        timeout: float = 15,
    ) -> None:
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout

    async def __call__(self, refresh_token: str) -> Dict[str, Any]:
        if not self.client_id or not self.client_secret:
            raise AuthError("ESI OAuth credentials not configured for token refresh")

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                self.token_url,
                data={"grant_type": "refresh_token", "refresh_token": refresh_token},
                auth=(self.client_id, self.client_secret),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
            resp.raise_for_status()
            return resp.json()


# ---------------------------------------------------------------------------
# Token store
# ---------------------------------------------------------------------------


class TokenStore:
    """Per-corporation ESI credentials with proactive, single-flight refresh."""

    def __init__(
        self,
        session_factory=AsyncSessionLocal,
        refresher: Optional[RefreshFn] = None,
        clock: Callable[[], dt.datetime] = utcnow,
        margin_seconds: float = TOKEN_EXPIRY_MARGIN_SECONDS,
    ) -> None:
        self._session_factory = session_factory
        self._refresher = refresher or EveSsoRefresher()
        self._clock = clock
        self._margin = dt.timedelta(seconds=margin_seconds)
        self._tokens: Dict[int, CorporationToken] = {}
        self._loaded = False
        self._inflight: Dict[int, asyncio.Task] = {}

    async def load(self) -> None:
        """Populate the in-memory cache from the database."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(CorporationToken))
                tokens = result.scalars().all()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to load corporation tokens: {exc}") from exc

        self._tokens = {t.tenant_id: t for t in tokens}
        self._loaded = True
        logger.info(f"Loaded {len(self._tokens)} corporation tokens")

    async def _get(self, tenant_id: int) -> Optional[CorporationToken]:
        if not self._loaded:
            await self.load()
        return self._tokens.get(tenant_id)

    # -- Reads ---------------------------------------------------------------

    async def get_valid_token(
        self, tenant_id: int, required_scopes: Iterable[str] = ()
    ) -> CorporationToken:
        """Return a usable token for ``tenant_id``, refreshing it if it is close to expiry.

        Raises:
            AuthError: no token stored, or the refresh failed.
            InsufficientScope: the token is valid but lacks a required scope.
        """
        token = await self._get(tenant_id)
        if token is None:
            raise AuthError(f"No ESI token stored for corporation {tenant_id}")

        if self._needs_refresh(token):
            token = await self.refresh(tenant_id)

        missing = set(required_scopes or ()) - set(token.scopes or ())
        if missing:
            raise InsufficientScope(
                f"Token for corporation {tenant_id} is missing scopes: {', '.join(sorted(missing))}"
            )
        return token

    async def select_token(self, required_scopes: Iterable[str] = ()) -> CorporationToken:
        """Pick the first corporation whose token carries ``required_scopes`` and can be made valid."""
        if not self._loaded:
            await self.load()

        required = set(required_scopes or ())
        last_error: Optional[AuthError] = None
        for tenant_id in sorted(self._tokens):
            if not self._tokens[tenant_id].has_scopes(required):
                logger.debug(f"Token for corporation {tenant_id} missing required scopes")
                continue
            try:
                return await self.get_valid_token(tenant_id, required)
            except AuthError as exc:
                last_error = exc

        if last_error is not None:
            raise AuthError(f"No usable ESI token: {last_error.message}") from last_error
        raise InsufficientScope(
            f"No stored corporation token carries scopes: {', '.join(sorted(required)) or '(none)'}"
        )

    async def list_tokens(self) -> List[CorporationToken]:
        if not self._loaded:
            await self.load()
        return list(self._tokens.values())

    async def token_status(self, tenant_id: int) -> TokenStatus:
        token = await self._get(tenant_id)
        if token is None:
            return TokenStatus(tenant_id=tenant_id, exists=False)

        now = self._clock()
        return TokenStatus(
            tenant_id=tenant_id,
            exists=True,
            is_valid=bool(token.is_valid),
            is_expired=token.expires_at <= now,
            expires_in_seconds=max(0.0, (token.expires_at - now).total_seconds()),
            scopes=sorted(token.scopes or []),
            last_refreshed_at=token.last_refreshed_at,
            last_refresh_error=token.last_refresh_error,
        )

    def _needs_refresh(self, token: CorporationToken) -> bool:
        return not token.is_valid or token.expires_at - self._margin <= self._clock()

    # -- Writes --------------------------------------------------------------

    async def store_token(
        self,
        tenant_id: int,
        access_token: str,
        refresh_token: str,
        *,
        expires_at: Optional[dt.datetime] = None,
        expires_in: int = 1200,
        scopes: Iterable[str] = (),
        corporation_name: Optional[str] = None,
        character_id: Optional[int] = None,
        character_name: Optional[str] = None,
    ) -> CorporationToken:
        """Insert or replace the token produced by the initial login flow."""
        now = self._clock()
        token = CorporationToken(
            tenant_id=tenant_id,
            corporation_name=corporation_name or f"Corporation {tenant_id}",
            character_id=character_id,
            character_name=character_name,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at or now + dt.timedelta(seconds=expires_in),
            scopes=sorted(set(scopes)),
            last_refreshed_at=now,
            is_valid=True,
            last_refresh_error=None,
        )
        stored = await self._persist(token)
        self._tokens[tenant_id] = stored
        logger.info(f"Stored token for corporation {stored.corporation_name} ({tenant_id})")
        return stored

    async def invalidate_token(self, tenant_id: int) -> None:
        token = await self._get(tenant_id)
        if token is None:
            return
        self._tokens[tenant_id] = await self._persist(_replace(token, is_valid=False))
        logger.warning(f"Token invalidated for corporation {tenant_id}")

    async def remove_token(self, tenant_id: int) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(
                    delete(CorporationToken).where(CorporationToken.tenant_id == tenant_id)
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to remove token for corporation {tenant_id}: {exc}") from exc
        self._tokens.pop(tenant_id, None)
        logger.info(f"Token removed for corporation {tenant_id}")

    # -- Refresh -------------------------------------------------------------

    async def refresh(self, tenant_id: int) -> CorporationToken:
        """Refresh the token for ``tenant_id``; concurrent callers share one refresh."""
        task = self._inflight.get(tenant_id)
        if task is None:
            task = asyncio.create_task(
                self._perform_refresh(tenant_id), name=f"token_refresh_{tenant_id}"
            )
            self._inflight[tenant_id] = task
            task.add_done_callback(lambda t, tid=tenant_id: self._forget(tid, t))
        else:
            logger.debug(f"Joining in-flight token refresh for corporation {tenant_id}")
        # Shielded so a cancelled caller does not abort the refresh for the others
        return await asyncio.shield(task)

    def _forget(self, tenant_id: int, task: asyncio.Task) -> None:
        if self._inflight.get(tenant_id) is task:
            del self._inflight[tenant_id]

    async def _perform_refresh(self, tenant_id: int) -> CorporationToken:
        token = await self._get(tenant_id)
        if token is None:
            raise AuthError(f"No ESI token stored for corporation {tenant_id}")

        logger.info(f"Refreshing access token for corporation {tenant_id}")
        try:
            payload = await self._refresher(token.refresh_token)
            access_token = payload["access_token"]
            expires_in = int(payload.get("expires_in", 1200))
        except Exception as exc:
            message = f"Token refresh failed for corporation {tenant_id}: {exc}"
            logger.error(message)
            await self._record_refresh_failure(token, str(exc))
            status = getattr(getattr(exc, "response", None), "status_code", None)
            raise AuthError(message, http_status=status) from exc

        now = self._clock()
        scopes = payload.get("scope")
        refreshed = _replace(
            token,
            access_token=access_token,
            refresh_token=payload.get("refresh_token") or token.refresh_token,
            expires_at=now + dt.timedelta(seconds=expires_in),
            scopes=sorted(scopes.split()) if isinstance(scopes, str) and scopes else token.scopes,
            last_refreshed_at=now,
            is_valid=True,
            last_refresh_error=None,
        )
        stored = await self._persist(refreshed)
        self._tokens[tenant_id] = stored
        logger.info(f"Token refreshed for corporation {tenant_id}")
        return stored

    async def _record_refresh_failure(self, token: CorporationToken, error: str) -> None:
        # The stale token stays in place; only the flags change.
        stale = _replace(token, is_valid=False, last_refresh_error=error)
        self._tokens[token.tenant_id] = stale
        try:
            self._tokens[token.tenant_id] = await self._persist(stale)
        except StorageError:
            logger.exception(f"Could not persist refresh failure for corporation {token.tenant_id}")

    async def _persist(self, token: CorporationToken) -> CorporationToken:
        try:
            async with self._session_factory() as session:
                merged = await session.merge(token)
                await session.commit()
                return merged
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to save token for corporation {token.tenant_id}: {exc}") from exc


def _replace(token: CorporationToken, **changes: Any) -> CorporationToken:
    """Return a new detached CorporationToken with ``changes`` applied."""
    values = {c.name: getattr(token, c.name) for c in CorporationToken.__table__.columns}
    values.update(changes)
    return CorporationToken(**values)
