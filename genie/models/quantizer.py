import math
import numbers

from genie.errors import UsageError


class Quantizer:
    """Affine map between K discrete button levels and reals in [low, high]."""

    def __init__(self, num_bins: int = 8, low: float = -1.0, high: float = 1.0):
        if num_bins < 2:
            raise UsageError(f"Quantizer needs at least 2 bins, got {num_bins}")
        if not high > low:
            raise UsageError(f"Empty quantizer range [{low}, {high}]")
        self.num_bins = num_bins
        self.low = float(low)
        self.high = float(high)
        self._step = (self.high - self.low) / (num_bins - 1)

    def discrete_to_real(self, index) -> float:
        if isinstance(index, bool) or not isinstance(index, numbers.Integral):
            raise UsageError(f"Button index must be an integer, got {index!r}")
        if not 0 <= index < self.num_bins:
            raise UsageError(f"Button index {index} outside [0, {self.num_bins})")
        return self.low + int(index) * self._step

    def real_to_discrete(self, value: float) -> int:
        if not math.isfinite(value):
            raise UsageError(f"Cannot quantize non-finite value {value!r}")
        index = int(round((float(value) - self.low) / self._step))
        return min(max(index, 0), self.num_bins - 1)

    def levels(self):
        return [self.discrete_to_real(i) for i in range(self.num_bins)]

    def dispose(self):
        # holds no tensors
        pass
