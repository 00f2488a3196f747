"""MEXC contract REST API async client.

Read-only access to the public catalog endpoints used to build the symbol
universe: contract details, ticker snapshot, and the plain symbol list.
"""

import asyncio
import logging
import math
from typing import Any, Optional

import httpx

from spikewatch.broker.models import ContractRow
from spikewatch.config import Config

logger = logging.getLogger("spikewatch.catalog")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}


def _to_float(value: Any) -> Optional[float]:
    """Parse a numeric field, returning ``None`` for missing or non-finite values."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_contract_rows(payload: Any) -> list[ContractRow]:
    """Convert a ``contract/detail`` JSON body into ``ContractRow`` objects.

    Rows without a symbol are skipped.  A missing ``state`` is treated as
    inactive; a missing ``apiAllowed`` as allowed.
    """
    rows = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(rows, list):
        return []

    contracts: list[ContractRow] = []
    for r in rows:
        if not isinstance(r, dict) or not r.get("symbol"):
            continue
        state = r.get("state")
        contracts.append(
            ContractRow(
                symbol=str(r["symbol"]),
                state=int(state) if isinstance(state, (int, float)) else -1,
                api_allowed=r.get("apiAllowed") is not False,
                taker_fee_rate=_to_float(r.get("takerFeeRate")),
                maker_fee_rate=_to_float(r.get("makerFeeRate")),
            )
        )
    return contracts


def parse_symbol_rows(payload: Any) -> list[str]:
    """Extract symbols from a ticker snapshot or symbol-list body.

    Rows may be plain strings or objects with a ``symbol`` key, and may sit
    under ``data`` or ``symbols``.
    """
    if not isinstance(payload, dict):
        return []
    rows = payload.get("data")
    if not isinstance(rows, list):
        rows = payload.get("symbols")
    if not isinstance(rows, list):
        return []

    symbols: list[str] = []
    for r in rows:
        sym = r if isinstance(r, str) else (r.get("symbol") if isinstance(r, dict) else None)
        if sym:
            symbols.append(str(sym))
    return symbols


class MexcCatalogClient:
    """Async client wrapping the public MEXC contract catalog endpoints."""

    def __init__(self, config: Config) -> None:
        self._config = config
        self._base_url = config.catalog_base_url.rstrip("/")
        self._headers = {"Accept": "application/json"}

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        **kwargs,
    ) -> httpx.Response:
        """Execute an HTTP request with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504) and rate-limits
        (429).  Non-retryable errors are raised immediately.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await getattr(client, method)(
                        url,
                        headers=self._headers,
                        timeout=15.0,
                        **kwargs,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "MEXC %s %s returned %d — retry %d/%d in %.1fs",
                        method.upper(), url, resp.status_code,
                        attempt + 1, _MAX_RETRIES, delay,
                    )
                    await asyncio.sleep(delay)
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    continue

                resp.raise_for_status()
                return resp

            except httpx.TransportError as exc:
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "MEXC %s %s transport error (%s) — retry %d/%d in %.1fs",
                    method.upper(), url, exc,
                    attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                await asyncio.sleep(delay)

        raise last_exc  # type: ignore[misc]

    # ── Catalog endpoints ────────────────────────────────────────────────

    async def fetch_contract_details(self) -> list[ContractRow]:
        """Fetch every contract with its trading state and fee rates."""
        resp = await self._request_with_retry(
            "get", f"{self._base_url}/api/v1/contract/detail",
        )
        return parse_contract_rows(resp.json())

    async def fetch_ticker_symbols(self) -> list[str]:
        """Fetch the symbols present in the current ticker snapshot."""
        resp = await self._request_with_retry(
            "get", f"{self._base_url}/api/v1/contract/ticker",
        )
        return parse_symbol_rows(resp.json())

    async def fetch_symbol_list(self) -> list[str]:
        """Fetch the bare contract symbol list."""
        resp = await self._request_with_retry(
            "get", f"{self._base_url}/api/v1/contract/symbols",
        )
        return parse_symbol_rows(resp.json())
