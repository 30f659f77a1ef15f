"""Gas fee parameters for user operations."""

from dataclasses import dataclass

# The relay silently drops operations whose priority fee is below this floor.
MIN_PRIORITY_FEE = 1_000_000


@dataclass(frozen=True)
class FeeParameters:
    max_fee_per_gas: int
    max_priority_fee_per_gas: int


class FeePolicy:
    def __init__(self, min_priority_fee: int = MIN_PRIORITY_FEE):
        self.min_priority_fee = min_priority_fee

    def compute(self, base_fee_per_gas: int) -> FeeParameters:
        """
        maxFeePerGas = base * 1.2 (truncated)
        maxPriorityFeePerGas = max(base / 10, floor)
        """
        if base_fee_per_gas < 0:
            raise ValueError("base_fee_per_gas must be non-negative")
        return FeeParameters(
            max_fee_per_gas=base_fee_per_gas * 12 // 10,
            max_priority_fee_per_gas=max(base_fee_per_gas // 10, self.min_priority_fee),
        )
