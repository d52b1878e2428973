"""
Read-only ERC-20 token oracle over EVM JSON-RPC.

Responsibilities:
- Current token balance and total supply (eth_call balanceOf / totalSupply).
- Timestamp of the first incoming Transfer to an address within the
  configured block window (eth_getLogs + eth_getBlockByNumber).
- Every address that received tokens within that window.
- Retry transport errors, HTTP 429 and 5xx with exponential backoff; JSON-RPC
  errors and exhausted retries surface as CollaboratorFailure.

Every call is slow and fallible; callers bound them with their own timeout.
"""

from __future__ import annotations

import asyncio
import itertools
from decimal import Decimal
from typing import Any, Protocol

import httpx

from backend_tokensale.chain.models import (
    HoldingPeriod,
    TransferLog,
    address_to_topic,
)
from backend_tokensale.config.env import mask_rpc_url
from backend_tokensale.config.settings import Settings
from backend_tokensale.core.exceptions import CollaboratorFailure
from backend_tokensale.core.validation import normalize_address
from backend_tokensale.logging import get_logger, short_address

logger = get_logger(__name__)

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
BALANCE_OF_SELECTOR = "0x70a08231"
TOTAL_SUPPLY_SELECTOR = "0x18160ddd"
ZERO_ADDRESS = "0x" + "0" * 40

# ~30 days of Polygon blocks
DEFAULT_LOG_BLOCK_RANGE = 1_200_000

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class BalanceOracle(Protocol):
    """What the dividend engine needs from the chain. TokenOracle implements it; tests use fakes."""

    async def get_balance(self, address: str) -> Decimal: ...

    async def get_first_transfer_timestamp(self, address: str) -> int | None: ...

    async def list_holder_addresses(self) -> list[str]: ...

    async def get_total_supply(self) -> Decimal: ...


class _RetryableRpcError(Exception):
    pass


class TokenOracle:
    """
    JSON-RPC client for one ERC-20 contract.

    A fresh httpx.AsyncClient is opened per operation so the oracle holds no
    connection state between requests and can be shared across event loops.
    """

    def __init__(
        self,
        rpc_url: str,
        token_address: str,
        *,
        decimals: int = 18,
        request_timeout_sec: float = 10.0,
        max_retries: int = 3,
        min_retry_delay_sec: float = 0.5,
        max_retry_delay_sec: float = 8.0,
        log_block_range: int = DEFAULT_LOG_BLOCK_RANGE,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Args:
            rpc_url: EVM JSON-RPC HTTP endpoint.
            token_address: ERC-20 contract; may be empty, in which case every call fails
                with CollaboratorFailure (code oracle_not_configured).
            decimals: Token decimals used to scale raw uint256 amounts.
            request_timeout_sec: HTTP timeout per RPC request.
            max_retries: Attempts per RPC request for retryable failures.
            min_retry_delay_sec: Initial backoff delay.
            max_retry_delay_sec: Cap for backoff delay.
            log_block_range: How many blocks back eth_getLogs scans.
            transport: Optional httpx transport (httpx.MockTransport in tests).
        """
        if not rpc_url.strip():
            raise ValueError("rpc_url must be non-empty")
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if log_block_range < 1:
            raise ValueError("log_block_range must be positive")

        self._rpc_url = rpc_url.rstrip("/")
        self._token = normalize_address(token_address, "token_address") if token_address else ""
        self._decimals = decimals
        self._timeout = request_timeout_sec
        self._max_retries = max_retries
        self._min_retry_delay = min_retry_delay_sec
        self._max_retry_delay = max_retry_delay_sec
        self._log_block_range = log_block_range
        self._transport = transport
        self._ids = itertools.count(1)

    @property
    def token_address(self) -> str:
        return self._token

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=httpx.Timeout(self._timeout), transport=self._transport)

    def _require_token(self) -> str:
        if not self._token:
            raise CollaboratorFailure("token contract address not configured", code="oracle_not_configured")
        return self._token

    def _scale(self, raw: int) -> Decimal:
        return Decimal(raw).scaleb(-self._decimals)

    # ------------------------------------------------------------------
    # Public reads
    # ------------------------------------------------------------------

    async def get_balance(self, address: str) -> Decimal:
        """Current token balance of address, scaled by decimals."""
        token = self._require_token()
        address = normalize_address(address)
        data = BALANCE_OF_SELECTOR + "0" * 24 + address[2:]
        async with self._client() as client:
            result = await self._call(client, "eth_call", [{"to": token, "data": data}, "latest"])
        return self._scale(_hex_to_int(result, "balanceOf"))

    async def get_total_supply(self) -> Decimal:
        token = self._require_token()
        async with self._client() as client:
            result = await self._call(client, "eth_call", [{"to": token, "data": TOTAL_SUPPLY_SELECTOR}, "latest"])
        return self._scale(_hex_to_int(result, "totalSupply"))

    async def get_first_transfer_timestamp(self, address: str) -> int | None:
        """
        Block timestamp of the earliest Transfer into address within the block window.

        Returns None when no incoming transfer is found.
        """
        token = self._require_token()
        address = normalize_address(address)
        async with self._client() as client:
            logs = await self._transfer_logs(client, token, to_address=address)
            if not logs:
                return None
            first = min(logs, key=lambda log: log.block_number)
            block = await self._call(client, "eth_getBlockByNumber", [hex(first.block_number), False])
            if not isinstance(block, dict) or "timestamp" not in block:
                raise CollaboratorFailure("oracle returned no block", code="oracle_bad_response")
            timestamp = _hex_to_int(block["timestamp"], "timestamp")
        logger.debug(
            "oracle_first_transfer",
            wallet=short_address(address),
            block=first.block_number,
            timestamp=timestamp,
        )
        return timestamp

    async def list_holder_addresses(self) -> list[str]:
        """Every non-zero address that received tokens within the block window, in first-seen order."""
        token = self._require_token()
        async with self._client() as client:
            logs = await self._transfer_logs(client, token, to_address=None)
        seen: dict[str, None] = {}
        for log in sorted(logs, key=lambda log: log.block_number):
            if log.to_address != ZERO_ADDRESS:
                seen.setdefault(log.to_address, None)
        logger.info("oracle_holder_addresses", count=len(seen), transfer_logs=len(logs))
        return list(seen)

    async def get_holding_period(self, address: str, now: int, min_days: int) -> HoldingPeriod:
        first = await self.get_first_transfer_timestamp(address)
        return HoldingPeriod.from_first_transfer(first, now, min_days)

    # ------------------------------------------------------------------
    # JSON-RPC plumbing
    # ------------------------------------------------------------------

    async def _block_number(self, client: httpx.AsyncClient) -> int:
        result = await self._call(client, "eth_blockNumber", [])
        return _hex_to_int(result, "blockNumber")

    async def _transfer_logs(
        self,
        client: httpx.AsyncClient,
        token: str,
        *,
        to_address: str | None,
    ) -> list[TransferLog]:
        latest = await self._block_number(client)
        from_block = max(0, latest - self._log_block_range)
        topics: list[Any] = [TRANSFER_TOPIC, None]
        topics.append(address_to_topic(to_address) if to_address else None)
        params = [{
            "address": token,
            "fromBlock": hex(from_block),
            "toBlock": hex(latest),
            "topics": topics,
        }]
        raw = await self._call(client, "eth_getLogs", params)
        items = raw if isinstance(raw, list) else []
        logs: list[TransferLog] = []
        for item in items:
            try:
                logs.append(TransferLog.from_rpc_item(item))
            except (KeyError, IndexError, TypeError, ValueError) as e:
                logger.debug("oracle_skip_invalid_log", error=str(e))
        return logs

    async def _call(self, client: httpx.AsyncClient, method: str, params: list[Any]) -> Any:
        """One JSON-RPC call with retry and exponential backoff on retryable failures."""
        delay = self._min_retry_delay
        last_error: Exception | None = None
        for attempt in range(self._max_retries):
            try:
                return await self._post(client, method, params)
            except (httpx.TransportError, _RetryableRpcError) as e:
                last_error = e
                logger.warning(
                    "oracle_rpc_retry",
                    method=method,
                    attempt=attempt + 1,
                    max_retries=self._max_retries,
                    error=str(e),
                )
                if attempt + 1 < self._max_retries:
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, self._max_retry_delay)
        logger.error(
            "oracle_rpc_give_up",
            method=method,
            rpc_url=mask_rpc_url(self._rpc_url),
            max_retries=self._max_retries,
            error=str(last_error),
        )
        raise CollaboratorFailure(f"oracle unavailable: {method}", code="oracle_unavailable") from last_error

    async def _post(self, client: httpx.AsyncClient, method: str, params: list[Any]) -> Any:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        resp = await client.post(self._rpc_url, json=body)
        if resp.status_code in _RETRYABLE_STATUS:
            raise _RetryableRpcError(f"HTTP {resp.status_code}")
        if resp.status_code >= 400:
            raise CollaboratorFailure(f"oracle HTTP {resp.status_code}: {method}", code="oracle_http_error")
        try:
            data = resp.json()
        except ValueError as e:
            raise CollaboratorFailure(f"oracle returned invalid JSON: {method}", code="oracle_bad_response") from e
        if not isinstance(data, dict):
            raise CollaboratorFailure(f"oracle returned invalid payload: {method}", code="oracle_bad_response")
        if "error" in data:
            err = data["error"] if isinstance(data["error"], dict) else {"message": data["error"]}
            raise CollaboratorFailure(
                f"oracle RPC error: {err.get('message', err)} (code={err.get('code')})",
                code="oracle_rpc_error",
            )
        if "result" not in data:
            raise CollaboratorFailure(f"oracle returned no result: {method}", code="oracle_bad_response")
        return data["result"]


def _hex_to_int(value: Any, what: str) -> int:
    if not isinstance(value, str):
        raise CollaboratorFailure(f"oracle returned non-hex {what}", code="oracle_bad_response")
    if value in ("0x", ""):
        return 0
    try:
        return int(value, 16)
    except ValueError as e:
        raise CollaboratorFailure(f"oracle returned non-hex {what}", code="oracle_bad_response") from e


def build_oracle(settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> TokenOracle:
    """TokenOracle configured from Settings."""
    oracle = TokenOracle(
        settings.rpc_url,
        settings.token_address,
        decimals=settings.token_decimals,
        request_timeout_sec=settings.oracle_timeout_sec,
        log_block_range=settings.oracle_log_block_range,
        transport=transport,
    )
    logger.info(
        "oracle_configured",
        rpc_url=mask_rpc_url(settings.rpc_url),
        token=short_address(settings.token_address) or None,
        decimals=settings.token_decimals,
    )
    return oracle
