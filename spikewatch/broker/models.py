"""Broker data models — typed representations of MEXC contract API objects."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ContractRow:
    """One row of the contract catalog (``/api/v1/contract/detail``)."""

    symbol: str
    state: int  # 0 = active
    api_allowed: bool
    taker_fee_rate: Optional[float]
    maker_fee_rate: Optional[float]

    @property
    def is_active(self) -> bool:
        return self.state == 0

    def within_fee_ceiling(self, max_fee: float, tolerance: float = 1e-12) -> bool:
        """``True`` when both maker and taker fees are known and ≤ *max_fee*.

        Rows with a missing fee are never treated as zero-fee.
        """
        if self.taker_fee_rate is None or self.maker_fee_rate is None:
            return False
        return max(self.taker_fee_rate, self.maker_fee_rate) <= max_fee + tolerance
