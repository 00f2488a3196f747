"""Universe builder — resolves the set of symbols to monitor.

Fallback chain, each step only attempted while the result is too small:

  1. Contract catalog filtered to active, API-tradable (and optionally
     zero-fee) contracts.
  2. Ticker snapshot symbols.
  3. Plain symbol list.

The whitelist and override lists are always merged in.  A failing source
counts as empty; only the caller decides whether a degraded universe is
fatal.
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Protocol

from spikewatch.broker.models import ContractRow
from spikewatch.config import Config

logger = logging.getLogger("spikewatch.universe")

# Below this many symbols the next fallback source is queried.
SOURCE_FLOOR = 10


class UniverseGuardrailError(RuntimeError):
    """The built universe is smaller than the configured minimum."""


class CatalogClient(Protocol):
    """What the builder needs from the catalog HTTP client."""

    async def fetch_contract_details(self) -> list[ContractRow]: ...

    async def fetch_ticker_symbols(self) -> list[str]: ...

    async def fetch_symbol_list(self) -> list[str]: ...


@dataclass(frozen=True)
class UniverseReport:
    """Diagnostics for the most recent build."""

    symbols: frozenset[str]
    source_counts: dict[str, int] = field(default_factory=dict)
    degraded: bool = False
    used_fallback: bool = False

    @property
    def size(self) -> int:
        return len(self.symbols)


class UniverseBuilder:
    """Builds the monitored symbol set from the catalog client.

    Args:
        client: Catalog client (``MexcCatalogClient`` or duck-type).
        config: Application configuration (universe filters).
    """

    def __init__(self, client: CatalogClient, config: Config) -> None:
        self._client = client
        self._config = config
        self.last_report: Optional[UniverseReport] = None

    # ── Sources ──────────────────────────────────────────────────────────

    def _keep_contract(self, row: ContractRow) -> bool:
        if not row.is_active or not row.api_allowed:
            return False
        if self._config.zero_fee_only:
            return row.within_fee_ceiling(self._config.max_taker_fee)
        return True

    async def _from_catalog(self) -> list[str]:
        rows = await self._client.fetch_contract_details()
        keep = [r.symbol for r in rows if self._keep_contract(r)]
        logger.info("[universe/detail] rows=%d kept=%d", len(rows), len(keep))
        return keep

    async def _from_ticker(self) -> list[str]:
        syms = await self._client.fetch_ticker_symbols()
        logger.info("[universe/ticker] kept=%d", len(syms))
        return syms

    async def _from_symbols(self) -> list[str]:
        syms = await self._client.fetch_symbol_list()
        logger.info("[universe/symbols] kept=%d", len(syms))
        return syms

    @staticmethod
    async def _safe(name: str, source: Callable[[], Awaitable[list[str]]]) -> list[str]:
        """Run one source, treating any failure as an empty result."""
        try:
            return await source()
        except Exception as exc:
            logger.warning("[universe/%s] source failed: %s", name, exc)
            return []

    # ── Build ────────────────────────────────────────────────────────────

    async def build(self) -> frozenset[str]:
        """Resolve the universe.  Never raises for upstream failures.

        The report for this build is stored on :attr:`last_report`.
        """
        cfg = self._config
        counts: dict[str, int] = {}

        primary = await self._safe("detail", self._from_catalog)
        counts["detail"] = len(primary)
        merged: set[str] = set(primary)

        if len(merged) < SOURCE_FLOOR:
            secondary = await self._safe("ticker", self._from_ticker)
            counts["ticker"] = len(secondary)
            merged.update(secondary)

        if len(merged) < SOURCE_FLOOR:
            tertiary = await self._safe("symbols", self._from_symbols)
            counts["symbols"] = len(tertiary)
            merged.update(tertiary)

        # Fallback sources carry no fee data, so zero-fee mode keeps only
        # what the catalog itself vetted.
        if cfg.zero_fee_only:
            merged &= set(primary)

        merged.update(cfg.zero_fee_whitelist)
        merged.update(cfg.universe_override)

        used_fallback = False
        if not merged and cfg.fallback_to_all and cfg.zero_fee_whitelist:
            merged = set(cfg.zero_fee_whitelist)
            used_fallback = True
            logger.info("[universe] fallback to whitelist")

        symbols = frozenset(merged)
        degraded = len(symbols) < cfg.min_universe_size
        if degraded:
            logger.warning(
                "[universe] degraded: %d symbol(s) < minimum %d",
                len(symbols), cfg.min_universe_size,
            )

        logger.info(
            "[universe] total=%d zero_fee_only=%s", len(symbols), cfg.zero_fee_only,
        )
        if symbols:
            logger.info("[universe] sample: %s", ", ".join(sorted(symbols)[:10]))

        self.last_report = UniverseReport(
            symbols=symbols,
            source_counts=counts,
            degraded=degraded,
            used_fallback=used_fallback,
        )
        return symbols
