"""
Procore OAuth Token Manager
Holds the system identity's token pair, refreshes it before expiry, and gates
dependent work on a one-shot "token ready" signal

TOKEN LIFECYCLE:
- initialize(): load the owner's stored token, or seed one from INIT_TOKEN /
  INIT_REF_TOKEN; resolves the ready gate exactly once
- get_valid_token(): refresh first when the token is inside the safety buffer
- refresh(): POST /oauth/token; persist, then swap the in-memory token
- TokenRefresher: background task refreshing ahead of expiry, self-healing
"""
import asyncio
import logging
import time
from typing import Callable, Optional

import httpx
import jwt

from hbsync.core.circuit_breakers import with_retry
from hbsync.core.config import Settings
from hbsync.core.exceptions import BootstrapCredentialsMissingError, TokenRefreshError, TokenUnavailableError
from hbsync.core.security import TokenCipher
from hbsync.models.schemas import Token
from hbsync.services.store import Table, VersionedStore

logger = logging.getLogger(__name__)

# Floor for the background refresher's sleep, so a short-lived token cannot spin the loop
MIN_REFRESH_INTERVAL = 5.0


def decode_jwt_expiry(access_token: str) -> Optional[float]:
    """
    Read the `exp` claim of a JWT access token without verifying it.

    Returns:
        Epoch seconds, or None when the token is not a decodable JWT
    """
    try:
        claims = jwt.decode(access_token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        logger.debug(f"Access token expiry not decodable: {e}")
        return None
    exp = claims.get("exp")
    return float(exp) if isinstance(exp, (int, float)) else None


class TokenManager:
    """
    Single owner of the system OAuth token.

    The current token is an immutable Token replaced in one assignment, so a
    reader sees either the old pair or the new pair. Refreshes are serialized.
    """

    def __init__(
        self,
        store: VersionedStore,
        http_client: httpx.AsyncClient,
        settings: Settings,
        cipher: TokenCipher,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.http_client = http_client
        self.settings = settings
        self.cipher = cipher
        self.clock = clock
        self.owner_id = settings.token_owner_id

        self._current: Optional[Token] = None
        self._ready = asyncio.Event()
        self._init_lock = asyncio.Lock()
        self._refresh_lock = asyncio.Lock()

    @property
    def current(self) -> Optional[Token]:
        return self._current

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set() and self._current is not None

    def _resolve_gate(self, token: Optional[Token]) -> None:
        """Resolve the ready gate once; later calls are ignored."""
        if self._ready.is_set():
            return
        self._current = token
        self._ready.set()

    # ============================================================================
    # INITIALIZATION
    # ============================================================================

    async def initialize(self) -> Token:
        """
        Load or seed the owner's token and open the ready gate.

        Raises:
            BootstrapCredentialsMissingError: No stored token and no bootstrap pair
            TokenUnavailableError: The gate already resolved unavailable
        """
        async with self._init_lock:
            if self._ready.is_set():
                if self._current is None:
                    raise TokenUnavailableError("Token initialization already failed")
                return self._current

            try:
                token = await self._load_or_seed()
            except Exception as e:
                logger.error(f"❌ Token initialization failed: {e}", exc_info=True)
                self._resolve_gate(None)
                raise

            self._resolve_gate(token)
            logger.info(f"✅ Token ready for owner '{self.owner_id}'")
            return token

    async def _load_or_seed(self) -> Token:
        row = await self.store.get(Table.TOKENS, self.owner_id)
        if row is not None:
            logger.info(f"Loaded stored token for owner '{self.owner_id}' (version {row['version']})")
            return Token(
                owner_id=self.owner_id,
                access_token=self.cipher.decrypt(row["access_token"]),
                refresh_token=self.cipher.decrypt(row["refresh_token"]),
                expires_at=row["expires_at"],
            )

        if not self.settings.has_bootstrap_credentials:
            raise BootstrapCredentialsMissingError(
                "No stored token and INIT_TOKEN / INIT_REF_TOKEN are not set"
            )

        token = Token(
            owner_id=self.owner_id,
            access_token=self.settings.procore_init_token,
            refresh_token=self.settings.procore_init_refresh_token,
            expires_at=self.clock() + self.settings.bootstrap_token_ttl,
        )
        await self._persist(token)
        logger.info(f"🚀 Seeded token for owner '{self.owner_id}' from bootstrap credentials")
        return token

    async def wait_until_ready(self, timeout: Optional[float] = None) -> Token:
        """
        Bounded wait on the ready gate.

        On timeout the gate resolves unavailable (fails closed).

        Raises:
            TokenUnavailableError: Initialization failed or did not finish in time
        """
        timeout = self.settings.token_ready_timeout if timeout is None else timeout
        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
        except asyncio.TimeoutError:
            logger.error(f"❌ Token not ready after {timeout}s, failing closed")
            self._resolve_gate(None)

        token = self._current
        if token is None:
            raise TokenUnavailableError("Token unavailable: initialization failed or timed out")
        return token

    # ============================================================================
    # ACCESS
    # ============================================================================

    def needs_refresh(self, token: Token) -> bool:
        """Expired, inside the safety buffer, or expiry unknown and undecodable."""
        if token.expires_at is None:
            decoded = decode_jwt_expiry(token.access_token)
            if decoded is None:
                return True
            token = token.model_copy(update={"expires_at": decoded})
        return token.expires_within(self.settings.token_refresh_buffer, self.clock())

    async def get_valid_token(self) -> Token:
        """
        Current token, refreshed first when it is inside the safety buffer.

        Only a token the provider just issued can come back inside the buffer:
        when Procore grants an `expires_in` shorter than `token_refresh_buffer`,
        the fresh token is returned (with a warning) after exactly one refresh.
        Refreshing again would only yield another short-lived token.

        Raises:
            TokenUnavailableError, TokenRefreshError, httpx.HTTPError
        """
        token = await self.wait_until_ready()
        if not self.needs_refresh(token):
            return token

        async with self._refresh_lock:
            current = self._current
            # Another coroutine refreshed while we waited for the lock
            if current is not token and not self.needs_refresh(current):
                return current
            return await self._refresh(current.refresh_token)

    async def force_refresh(self, stale_access_token: str) -> Token:
        """
        Refresh after the provider rejected `stale_access_token` (401).

        Skips the exchange if another coroutine already replaced that token.
        """
        await self.wait_until_ready()
        async with self._refresh_lock:
            current = self._current
            if current.access_token != stale_access_token:
                logger.info("Token already replaced by a concurrent refresh")
                return current
            return await self._refresh(current.refresh_token)

    async def refresh(self, refresh_token: Optional[str] = None) -> Token:
        """
        Exchange a refresh token for a new pair.

        Args:
            refresh_token: Token to exchange (default: the current one)

        Returns:
            The new token, already persisted and swapped in

        Raises:
            TokenRefreshError: Provider rejected the exchange or sent no access token
            httpx.HTTPError: Network failure
        """
        async with self._refresh_lock:
            if refresh_token is None:
                current = await self.wait_until_ready()
                refresh_token = current.refresh_token
            return await self._refresh(refresh_token)

    async def _refresh(self, refresh_token: str) -> Token:
        url = f"{self.settings.procore_oauth_url}/oauth/token"
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.settings.procore_client_id,
            "client_secret": self.settings.procore_client_secret,
        }

        logger.info(f"🔄 Refreshing Procore token for owner '{self.owner_id}'")
        response = await self.http_client.post(url, data=data, timeout=self.settings.procore_request_timeout)

        if not response.is_success:
            logger.error(f"❌ Token refresh failed: {response.status_code} - {response.text[:200]}")
            raise TokenRefreshError(
                f"Token refresh failed with status {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise TokenRefreshError("Token endpoint returned invalid JSON", response.status_code, response.text) from e

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            raise TokenRefreshError("Token endpoint returned no access_token", response.status_code, response.text)

        expires_in = payload.get("expires_in")
        if isinstance(expires_in, (int, float)):
            expires_at = self.clock() + expires_in
        else:
            expires_at = decode_jwt_expiry(access_token)

        token = Token(
            owner_id=self.owner_id,
            access_token=access_token,
            # Provider may omit a rotated refresh token; keep the one we used
            refresh_token=payload.get("refresh_token") or refresh_token,
            expires_at=expires_at,
        )

        # Persist before swapping, so a failed write leaves both copies on the old pair
        await self._persist(token)
        self._current = token

        if self.needs_refresh(token):
            logger.warning(f"⚠️  Refreshed token expires inside the {self.settings.token_refresh_buffer}s buffer")
        logger.info(f"✅ Token refreshed for owner '{self.owner_id}', expires at {expires_at}")
        return token

    async def store_token_pair(self, access_token: str, refresh_token: str, expires_in: Optional[float] = None) -> Token:
        """
        Store an externally obtained token pair (CLI insert-token).

        Returns:
            The stored token
        """
        ttl = self.settings.bootstrap_token_ttl if expires_in is None else expires_in
        token = Token(
            owner_id=self.owner_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=self.clock() + ttl,
        )
        async with self._refresh_lock:
            await self._persist(token)
            if self._ready.is_set() and self._current is not None:
                self._current = token
        logger.info(f"✅ Stored token pair for owner '{self.owner_id}'")
        return token

    async def _persist(self, token: Token) -> int:
        return await self.store.upsert_entity(
            Table.TOKENS,
            {
                "owner_id": token.owner_id,
                "access_token": self.cipher.encrypt(token.access_token),
                "refresh_token": self.cipher.encrypt(token.refresh_token),
                "expires_at": token.expires_at,
            },
        )


# ============================================================================
# BACKGROUND REFRESH
# ============================================================================

class TokenRefresher:
    """
    Supervised background task that keeps the token fresh.

    Sleeps until `expires_at - buffer`, refreshes (one immediate retry on
    failure), and always reschedules. Only stop() ends the loop.
    """

    def __init__(self, token_manager: TokenManager, settings: Settings, sleep=asyncio.sleep):
        self.token_manager = token_manager
        self.settings = settings
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self.cycles = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="token-refresher")
        logger.info("🚀 Token refresher started")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Token refresher stopped")

    def next_delay(self, last_cycle_failed: bool) -> float:
        """Seconds until the next refresh attempt."""
        if last_cycle_failed:
            return self.settings.token_retry_delay
        token = self.token_manager.current
        if token is None or token.expires_at is None:
            return MIN_REFRESH_INTERVAL
        delay = token.expires_at - self.settings.token_refresh_buffer - self.token_manager.clock()
        return max(delay, MIN_REFRESH_INTERVAL)

    async def _run(self) -> None:
        failed = False
        while True:
            if not self.token_manager.is_ready:
                try:
                    await self.token_manager.wait_until_ready()
                except Exception as e:
                    logger.error(f"❌ Token refresher waiting on unavailable token: {e}")
                    await self._sleep(self.settings.token_retry_delay)
                    continue

            delay = self.next_delay(failed)
            logger.info(f"Next token refresh in {delay:.0f}s")
            await self._sleep(delay)
            failed = not await self.refresh_cycle()

    async def refresh_cycle(self) -> bool:
        """One refresh with a single immediate retry. Never raises."""
        self.cycles += 1
        try:
            await self._refresh_with_retry()
            return True
        except Exception as e:
            self.failures += 1
            logger.error(f"❌ Scheduled token refresh failed after retry: {e}", exc_info=True)
            return False

    @with_retry(max_attempts=2, min_wait=0, max_wait=0)
    async def _refresh_with_retry(self) -> Token:
        return await self.token_manager.refresh()
