"""One-shot script to build the symbol universe and print what each source returned.

Usage (from the project root):
    python -m scripts.probe_universe
    python -m scripts.probe_universe --zero-fee-only
"""

import argparse
import asyncio
import dataclasses
import logging
import sys
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from spikewatch.broker.mexc_client import MexcCatalogClient
from spikewatch.config import load_config
from spikewatch.universe import UniverseBuilder


async def _main(zero_fee_only: bool | None) -> int:
    config = load_config()
    if zero_fee_only is not None:
        config = dataclasses.replace(config, zero_fee_only=zero_fee_only)

    builder = UniverseBuilder(MexcCatalogClient(config), config)
    symbols = await builder.build()
    report = builder.last_report

    print(f"sources:  {report.source_counts}")
    print(f"fallback: {report.used_fallback}")
    print(f"degraded: {report.degraded} (minimum {config.min_universe_size})")
    print(f"total:    {len(symbols)}")
    for symbol in sorted(symbols):
        print(f"  {symbol}")
    return 1 if report.degraded else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Probe the MEXC universe sources")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--zero-fee-only", dest="zero_fee_only", action="store_true", default=None)
    group.add_argument("--all-fees", dest="zero_fee_only", action="store_false")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    sys.exit(asyncio.run(_main(args.zero_fee_only)))
