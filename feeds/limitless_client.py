"""Limitless Exchange portfolio API client with wallet-signature login."""
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from eth_account import Account
from eth_account.messages import encode_defunct

logger = logging.getLogger(__name__)

LIMITLESS_API_URL = "https://api.limitless.exchange"
SESSION_COOKIE = "limitless_session"

# Treat a login as good for 23h (the server allows about 24h) and renew it
# once less than the buffer remains
SESSION_TTL_SECONDS = 23 * 60 * 60
SESSION_REFRESH_BUFFER_SECONDS = 10 * 60

_COOKIE_RE = re.compile(rf"{SESSION_COOKIE}=([^;]+)")


class LimitlessAPIError(Exception):
    """A portfolio API call failed (HTTP error status or transport failure)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(LimitlessAPIError):
    """Login with the wallet signature failed."""


@dataclass
class SessionCache:
    """Session cookie plus its expiry, owned by whoever builds the client.

    Pass the same instance to successive clients to reuse a login across
    pipeline runs.
    """
    cookie: Optional[str] = None
    expires_at: float = 0.0  # unix seconds
    wallet_address: Optional[str] = None

    def is_valid(self, now: Optional[float] = None,
                 buffer_seconds: float = SESSION_REFRESH_BUFFER_SECONDS) -> bool:
        now = time.time() if now is None else now
        return bool(self.cookie) and self.expires_at > now + buffer_seconds

    def store(self, cookie: str, wallet_address: str,
              ttl_seconds: float = SESSION_TTL_SECONDS, now: Optional[float] = None):
        now = time.time() if now is None else now
        self.cookie = cookie
        self.wallet_address = wallet_address
        self.expires_at = now + ttl_seconds

    def invalidate(self):
        self.cookie = None
        self.expires_at = 0.0


def _to_hex(text: str) -> str:
    return "0x" + text.encode("utf-8").hex()


def _unwrap_list(data: Any, key: str) -> Optional[list]:
    """Portfolio endpoints wrap lists as {data: [...]}, {<key>: [...]} or not at all."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for candidate in (data.get("data"), data.get(key)):
            if isinstance(candidate, list):
                return candidate
    return None


class LimitlessClient:
    """Fetches positions, trades, points and traded volume for one wallet."""

    def __init__(
        self,
        private_key: str,
        base_url: str = LIMITLESS_API_URL,
        timeout: float = 30.0,
        session: Optional[SessionCache] = None,
        trades_limit: int = 100,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.private_key = private_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or SessionCache()
        self.trades_limit = trades_limit
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        )

    async def authenticate(self) -> str:
        """Sign the server's login message and return the session cookie."""
        if not self.private_key:
            raise AuthenticationError("WALLET_PRIVATE_KEY is required to log in")
        try:
            account = Account.from_key(self.private_key)
        except (ValueError, TypeError) as e:
            raise AuthenticationError(f"Invalid wallet private key: {e}") from e

        logger.info("Authenticating with Limitless", extra={"address": account.address})
        try:
            async with self._client() as client:
                resp = await client.get("/auth/signing-message")
                if resp.status_code != 200:
                    raise AuthenticationError(
                        f"Failed to get signing message: {resp.status_code}",
                        resp.status_code,
                    )
                message = resp.text
                signed = Account.sign_message(
                    encode_defunct(text=message), private_key=self.private_key
                )
                signature = "0x" + signed.signature.hex().removeprefix("0x")

                resp = await client.post(
                    "/auth/login",
                    headers={
                        "x-account": account.address,
                        "x-signing-message": _to_hex(message),
                        "x-signature": signature,
                        "Accept": "application/json",
                    },
                    json={"client": "eoa"},
                )
        except httpx.HTTPError as e:
            raise AuthenticationError(f"Login request failed: {e}") from e

        if resp.status_code >= 400:
            raise AuthenticationError(
                f"Authentication failed: {resp.status_code} - {resp.text}",
                resp.status_code,
            )

        cookie = resp.cookies.get(SESSION_COOKIE)
        if not cookie:
            for header in resp.headers.get_list("set-cookie"):
                match = _COOKIE_RE.search(header)
                if match:
                    cookie = match.group(1)
                    break
        if not cookie:
            raise AuthenticationError("No session cookie received")

        self.session.store(cookie, account.address)
        logger.info("Authentication successful")
        return cookie

    async def ensure_session(self):
        """Log in unless the cached session is still comfortably valid."""
        if self.session.is_valid():
            logger.debug("Using cached session cookie")
            return
        await self.refresh_session()

    async def refresh_session(self):
        self.session.invalidate()
        await self.authenticate()

    async def _get(self, path: str, params: Optional[dict] = None) -> Any:
        """GET a JSON endpoint, re-authenticating once on a 401."""
        await self.ensure_session()
        resp = await self._send(path, params)
        if resp.status_code == 401:
            logger.info("Got 401, forcing re-authentication", extra={"path": path})
            await self.refresh_session()
            resp = await self._send(path, params)
        if resp.status_code >= 400:
            raise LimitlessAPIError(
                f"API request failed: {path} {resp.status_code} {resp.text[:200]}",
                resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise LimitlessAPIError(f"Invalid JSON from {path}: {e}") from e

    async def _send(self, path: str, params: Optional[dict]) -> httpx.Response:
        try:
            async with self._client() as client:
                return await client.get(
                    path,
                    params=params,
                    headers={"Cookie": f"{SESSION_COOKIE}={self.session.cookie}"},
                )
        except httpx.HTTPError as e:
            raise LimitlessAPIError(f"Request to {path} failed: {e}") from e

    async def fetch_positions(self) -> list[dict]:
        data = await self._get("/portfolio/positions")
        positions = _unwrap_list(data, "positions")
        if positions is None:
            raise LimitlessAPIError("Unexpected positions payload")
        logger.info("Fetched positions", extra={"count": len(positions)})
        return positions

    async def fetch_trades(self) -> list[dict]:
        data = await self._get(
            "/portfolio/trades", params={"page": 1, "limit": self.trades_limit}
        )
        trades = _unwrap_list(data, "trades")
        if trades is None:
            raise LimitlessAPIError("Unexpected trades payload")
        logger.info("Fetched trades", extra={"count": len(trades)})
        return trades

    async def fetch_points(self) -> Optional[dict]:
        data = await self._get("/portfolio/points")
        logger.info("Fetched points")
        return data

    async def fetch_volume(self) -> Optional[Any]:
        await self.ensure_session()
        address = self.session.wallet_address
        data = await self._get(f"/portfolio/{address}/traded-volume")
        logger.info("Fetched traded volume")
        return data
