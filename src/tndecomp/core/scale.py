"""Log-magnitude scale factor carried alongside tensor buffers.

Repeated contractions of normalised tensors can over- or underflow double
precision. Tensors therefore keep their overall magnitude as a separate
``LogScale`` (natural log of the magnitude plus a sign) and only fold it into
the buffer when a dense value is requested.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from tndecomp.errors import InvalidState

# exp() overflows a float64 above this
_MAX_LOG = 709.0


@dataclass(frozen=True, slots=True)
class LogScale:
    """A real number stored as ``sign * exp(log_num)``.

    Attributes:
        log_num: Natural log of the magnitude. ``-inf`` for zero.
        sign:    +1, -1, or 0 (zero).

    Example:
        >>> s = LogScale.from_real(-4.0)
        >>> s.sign, round(s.real(), 12)
        (-1, -4.0)
        >>> round((s * s).real(), 12)
        16.0
    """

    log_num: float = 0.0
    sign: int = 1

    def __post_init__(self) -> None:
        if self.sign not in (-1, 0, 1):
            raise ValueError(f"sign must be -1, 0 or +1, got {self.sign}")
        if self.sign == 0 and self.log_num != -math.inf:
            object.__setattr__(self, "log_num", -math.inf)

    @classmethod
    def from_real(cls, value: float) -> LogScale:
        value = float(value)
        if value == 0.0:
            return cls(-math.inf, 0)
        return cls(math.log(abs(value)), 1 if value > 0 else -1)

    @classmethod
    def zero(cls) -> LogScale:
        return cls(-math.inf, 0)

    def is_zero(self) -> bool:
        return self.sign == 0

    def is_finite_real(self) -> bool:
        """True if ``real()`` can be computed without overflow."""
        return self.sign == 0 or self.log_num < _MAX_LOG

    def real(self) -> float:
        """Value as a Python float.

        Raises:
            InvalidState: If the magnitude overflows a float64.
        """
        if self.sign == 0:
            return 0.0
        if not self.is_finite_real():
            raise InvalidState(
                f"scale exp({self.log_num:.2f}) is not a finite real number"
            )
        return self.sign * math.exp(self.log_num)

    def real0(self) -> float:
        """Value as a float, saturating to +/-inf instead of raising."""
        if self.sign == 0:
            return 0.0
        if not self.is_finite_real():
            return self.sign * math.inf
        return self.sign * math.exp(self.log_num)

    def abs(self) -> LogScale:
        return LogScale(self.log_num, abs(self.sign))

    def __neg__(self) -> LogScale:
        return LogScale(self.log_num, -self.sign)

    def __mul__(self, other: LogScale | float) -> LogScale:
        if not isinstance(other, LogScale):
            other = LogScale.from_real(other)
        if self.sign == 0 or other.sign == 0:
            return LogScale.zero()
        return LogScale(self.log_num + other.log_num, self.sign * other.sign)

    __rmul__ = __mul__

    def __truediv__(self, other: LogScale | float) -> LogScale:
        if not isinstance(other, LogScale):
            other = LogScale.from_real(other)
        if other.sign == 0:
            raise ZeroDivisionError("division by a zero LogScale")
        if self.sign == 0:
            return LogScale.zero()
        return LogScale(self.log_num - other.log_num, self.sign * other.sign)

    def __repr__(self) -> str:
        prefix = "-" if self.sign < 0 else ""
        if self.sign == 0:
            return "LogScale(0)"
        return f"LogScale({prefix}exp({self.log_num:.4g}))"
