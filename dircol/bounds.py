"""
Bounds on a decision variable or a constraint.
"""

from dataclasses import dataclass
from typing import Optional
import math


@dataclass(frozen=True)
class Bounds:
    """A (lower, upper) pair, or unset, which means (-inf, +inf).

    Bounds(value) and Bounds(lower=value) both pin the variable to a single
    value. Write Bounds(value, math.inf) for a lower bound only.
    """
    # Also the upper bound when upper is omitted.
    lower: Optional[float] = None
    upper: Optional[float] = None

    def __post_init__(self):
        if self.lower is not None and self.upper is None:
            object.__setattr__(self, 'upper', self.lower)
        if self.lower is None and self.upper is not None:
            raise ValueError("Bounds with an upper value need a lower value too")
        if self.is_set():
            if math.isnan(self.lower) or math.isnan(self.upper):
                raise ValueError("Bounds cannot be NaN")
            if self.lower > self.upper:
                raise ValueError(f"Lower bound {self.lower} exceeds upper bound {self.upper}")

    def is_set(self) -> bool:
        return self.lower is not None

    def as_tuple(self) -> tuple[float, float]:
        """Return (lower, upper) with infinities for unset bounds."""
        if not self.is_set():
            return -math.inf, math.inf
        return float(self.lower), float(self.upper)
