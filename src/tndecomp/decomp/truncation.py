"""Spectrum truncation policy shared by every decomposition.

``truncate`` turns a descending weight spectrum (density-matrix eigenvalues
or squared singular values) into a kept count, the discarded weight and a
split threshold. The block-sparse SVD runs it once on the merged spectrum of
all blocks and then compares each block's own weights against the threshold.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import NamedTuple

import numpy as np

from tndecomp.core.scale import LogScale
from tndecomp.errors import InvalidArgument

logger = logging.getLogger(__name__)

# Offset applied below the midpoint of the boundary weights
_SPLIT_EPS = 1e-5

# Number of weights listed by log_spectrum
_SHOW_MAX = 10


class TruncationResult(NamedTuple):
    """Outcome of :func:`truncate`.

    Attributes:
        num_kept:         Number of leading weights kept (always >= 1).
        truncation_error: Discarded weight, normalised in relative mode.
        split_threshold:  Weights strictly above this value are kept; -1
                          when nothing was discarded.
    """

    num_kept: int
    truncation_error: float
    split_threshold: float


@dataclass(frozen=True, eq=False)
class Spectrum:
    """Kept density-matrix eigenvalues (descending) and the truncation error."""

    eigs: np.ndarray
    truncation_error: float = 0.0

    @property
    def num_kept(self) -> int:
        return len(self.eigs)

    def __len__(self) -> int:
        return len(self.eigs)

    def __repr__(self) -> str:
        return (
            f"Spectrum(num_kept={self.num_kept}, "
            f"truncation_error={self.truncation_error:.3e})"
        )


def clamp_negative_tail(weights: Sequence[float] | np.ndarray) -> np.ndarray:
    """Return a copy with the trailing run of negative weights set to zero.

    Small negative eigenvalues at the end of a descending spectrum are
    round-off; only the tail is touched.
    """
    w = np.array(weights, dtype=np.float64)
    n = len(w)
    while n > 0 and w[n - 1] < 0:
        w[n - 1] = 0.0
        n -= 1
    return w


def truncate(
    weights: Sequence[float] | np.ndarray,
    max_m: int,
    min_m: int = 1,
    cutoff: float = 0.0,
    absolute_cutoff: bool = False,
    rel_cutoff: bool = False,
) -> TruncationResult:
    """Decide how many leading weights of a descending spectrum to keep.

    Weights are discarded from the tail, first down to ``max_m`` and then
    while the cutoff criterion holds and more than ``min_m`` remain:

    - ``absolute_cutoff``: discard every weight below ``cutoff``.
    - otherwise: discard while the accumulated error plus the next weight
      stays below ``cutoff * scale``, with ``scale`` the largest weight in
      relative mode and 1 otherwise. The reported error is divided by
      ``scale`` (0 if the largest weight is 0).

    At least one weight is always kept. The input is not modified.

    Args:
        weights:         Descending spectrum. A negative tail is clamped to 0.
        max_m:           Hard upper bound on the kept count.
        min_m:           Lower bound on the kept count.
        cutoff:          Discard threshold (see above).
        absolute_cutoff: Per-weight instead of cumulative criterion.
        rel_cutoff:      Cumulative criterion relative to the largest weight.

    Returns:
        TruncationResult(num_kept, truncation_error, split_threshold).

    Raises:
        InvalidArgument: If ``max_m < 1`` or ``min_m > max_m``.
        ValueError:      If ``weights`` is empty.

    Example:
        >>> truncate([9.0, 4.0, 1.0, 0.01], max_m=10, cutoff=0.05,
        ...          absolute_cutoff=True)[:2]
        (3, 0.01)
    """
    if max_m < 1:
        raise InvalidArgument(f"max_m must be >= 1, got {max_m}")
    if min_m > max_m:
        raise InvalidArgument(f"min_m ({min_m}) must not exceed max_m ({max_m})")
    w = clamp_negative_tail(weights)
    orig_m = len(w)
    if orig_m == 0:
        raise ValueError("cannot truncate an empty spectrum")
    if orig_m == 1:
        return TruncationResult(1, 0.0, float(w[0]) / 2.0)

    m = orig_m
    err = 0.0

    while m > max_m:
        err += w[m - 1]
        m -= 1

    if absolute_cutoff:
        while m > min_m and w[m - 1] < cutoff:
            err += w[m - 1]
            m -= 1
    else:
        scale = w[0] if rel_cutoff else 1.0
        while m > min_m and err + w[m - 1] < cutoff * scale:
            err += w[m - 1]
            m -= 1
        err = 0.0 if w[0] == 0.0 else err / scale

    m = max(m, 1)

    if m < orig_m:
        split = (w[m - 1] + w[m]) / 2.0 - _SPLIT_EPS * w[m]
    else:
        split = -1.0

    return TruncationResult(int(m), float(err), float(split))


def log_spectrum(
    probs: np.ndarray,
    truncation_error: float,
    scale: LogScale,
    *,
    max_m: int,
    min_m: int,
    cutoff: float,
    do_truncate: bool,
    rel_cutoff: bool,
    absolute_cutoff: bool,
    power: int = 2,
) -> None:
    """Log the kept spectrum at INFO level.

    ``probs`` are the kept weights without the scale. The scale is folded in
    when the leading weight stays within a few orders of magnitude of one;
    weights are squared singular values (``power=2``) or eigenvalues (``power=1``).
    """
    if not logger.isEnabledFor(logging.INFO):
        return
    logger.info(
        "minm = %d, maxm = %d, cutoff = %.2E, truncate = %s",
        min_m, max_m, cutoff, do_truncate,
    )
    logger.info("Kept m=%d states, trunc. err. = %.3E", len(probs), truncation_error)
    logger.info("doRelCutoff = %s, absoluteCutoff = %s", rel_cutoff, absolute_cutoff)
    logger.info(
        "Scale is = %sexp(%.2f)", "-" if scale.sign < 0 else "", scale.log_num
    )
    if len(probs) == 0:
        return

    shown = np.asarray(probs[:_SHOW_MAX], dtype=np.float64)
    lead = abs(float(shown[0]))
    order_mag = (np.log(lead) if lead > 0 else -np.inf) + power * scale.log_num
    if abs(order_mag) < 5 and scale.is_finite_real():
        shown = shown * scale.real0() ** power
        header = "Denmat evals"
    else:
        header = f"Denmat evals (not including log(scale) = {scale.log_num:.2f})"
    values = ", ".join(
        f"{e:.3f}" if 1e-3 < e < 1000 else f"{e:.3E}" for e in shown
    )
    logger.info("%s: %s", header, values)
