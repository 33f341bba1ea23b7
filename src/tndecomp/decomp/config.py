"""Configuration shared by the dense and block-sparse decompositions."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from typing import Any

from tndecomp.errors import InvalidArgument

# Default discard threshold and bound on kept states
MIN_CUT = 1e-15
MAX_M = 5000

# Option names accepted by DecompConfig.from_args -> dataclass field
OPTION_NAMES: dict[str, str] = {
    "Cutoff": "cutoff",
    "Maxm": "max_m",
    "Minm": "min_m",
    "Truncate": "truncate",
    "DoRelCutoff": "do_rel_cutoff",
    "AbsoluteCutoff": "absolute_cutoff",
    "ShowEigs": "show_eigs",
    "LeftIndexName": "left_index_name",
    "RightIndexName": "right_index_name",
    "IndexType": "index_type",
    "LeftIndexType": "left_index_type",
    "RightIndexType": "right_index_type",
    "SVDThreshold": "svd_threshold",
    "SVDNOrthPass": "svd_n_orth_pass",
    "Workers": "workers",
}


@dataclass
class DecompConfig:
    """Truncation and output-naming options for svd/diag_hermitian.

    Attributes:
        cutoff:           Discard threshold. A cumulative-error budget by
                          default, a per-weight threshold with absolute_cutoff.
        max_m:            Hard upper bound on the number of kept states.
        min_m:            Lower bound on the number of kept states.
        truncate:         Whether to truncate at all. None picks the
                          operation default (svd: True, diag_hermitian: False).
        do_rel_cutoff:    Interpret cutoff relative to the largest weight.
        absolute_cutoff:  Discard every weight below cutoff.
        show_eigs:        Log the kept spectrum at INFO level.
        left_index_name:  Label of the new index on U (and of diag_hermitian's
                          new index).
        right_index_name: Label of the new index on V.
        index_type:       Tag applied to new indices.
        left_index_type:  Tag for the left index (defaults to index_type).
        right_index_type: Tag for the right index (defaults to index_type).
        svd_threshold:    Singular values below this fraction of the largest
                          are recomputed by the SVD kernel for accuracy.
        svd_n_orth_pass:  Re-orthonormalisation passes run by the SVD kernel.
        workers:          Threads used to decompose blocks of a
                          SymmetricTensor (1 = sequential).
    """

    cutoff: float = MIN_CUT
    max_m: int = MAX_M
    min_m: int = 1
    truncate: bool | None = None
    do_rel_cutoff: bool = False
    absolute_cutoff: bool = False
    show_eigs: bool = False
    left_index_name: str = "ul"
    right_index_name: str = "vl"
    index_type: str = "Link"
    left_index_type: str | None = None
    right_index_type: str | None = None
    svd_threshold: float = 1e-3
    svd_n_orth_pass: int = 2
    workers: int = 1

    def __post_init__(self) -> None:
        if self.min_m < 1:
            raise InvalidArgument(f"min_m must be >= 1, got {self.min_m}")
        if self.max_m < self.min_m:
            raise InvalidArgument(
                f"max_m ({self.max_m}) must be >= min_m ({self.min_m})"
            )
        if self.cutoff < 0:
            raise InvalidArgument(f"cutoff must be >= 0, got {self.cutoff}")
        if self.svd_n_orth_pass < 0:
            raise InvalidArgument(
                f"svd_n_orth_pass must be >= 0, got {self.svd_n_orth_pass}"
            )
        if self.workers < 1:
            raise InvalidArgument(f"workers must be >= 1, got {self.workers}")
        if self.left_index_name == self.right_index_name:
            raise InvalidArgument(
                f"left and right index names must differ, both are "
                f"{self.left_index_name!r}"
            )

    @classmethod
    def from_args(
        cls,
        args: Mapping[str, Any] | None = None,
        **overrides: Any,
    ) -> DecompConfig:
        """Build a config from option names such as ``{"Maxm": 50, "Cutoff": 1e-8}``.

        Field names are accepted too; ``overrides`` win over ``args``.

        Raises:
            InvalidArgument: For an unrecognised option.
        """
        field_names = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for name, value in {**(args or {}), **overrides}.items():
            field_name = OPTION_NAMES.get(name, name)
            if field_name not in field_names:
                raise InvalidArgument(f"unrecognised decomposition option {name!r}")
            values[field_name] = value
        return cls(**values)

    def with_(self, **changes: Any) -> DecompConfig:
        """Copy with some fields replaced (validated again)."""
        return replace(self, **changes)

    @property
    def left_type(self) -> str:
        return self.left_index_type or self.index_type

    @property
    def right_type(self) -> str:
        return self.right_index_type or self.index_type

    def should_truncate(self, default: bool) -> bool:
        return default if self.truncate is None else bool(self.truncate)
