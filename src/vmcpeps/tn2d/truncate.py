"""Truncation policy for boundary-MPS compression."""
from __future__ import annotations

from vmcpeps import config  # noqa: F401 - JAX config must be imported first

from dataclasses import dataclass, field

import jax
import jax.numpy as jnp
import numpy as np

__all__ = [
    "CompressScheme",
    "SVDCompress",
    "Variation1Site",
    "Variation2Site",
    "BMPSTruncatePara",
    "truncated_svd",
]


class CompressScheme:
    """Tag base class selecting the boundary-MPS compression algorithm."""


@dataclass(frozen=True)
class SVDCompress(CompressScheme):
    """Zip-up truncated SVD only."""

    pass


@dataclass(frozen=True)
class Variation1Site(CompressScheme):
    """Zip-up guess refined by one-site variational sweeps."""

    pass


@dataclass(frozen=True)
class Variation2Site(CompressScheme):
    """Zip-up guess refined by two-site variational sweeps."""

    pass


@dataclass(frozen=True)
class BMPSTruncatePara:
    """Bond-dimension budget and refinement settings for one absorption.

    ``d_max`` is a hard cap. ``trunc_err`` is the relative squared weight that
    may be discarded before ``d_max`` is reached; it only ever lowers the kept
    rank. ``convergence_tol`` and ``iter_max`` bound the variational sweeps.
    """

    d_min: int
    d_max: int
    trunc_err: float
    compress_scheme: CompressScheme = field(default_factory=Variation2Site)
    convergence_tol: float = 1e-13
    iter_max: int = 10

    def __post_init__(self) -> None:
        if self.d_min < 1:
            raise ValueError(f"d_min must be positive, got {self.d_min}")
        if self.d_max < self.d_min:
            raise ValueError(f"d_max={self.d_max} is smaller than d_min={self.d_min}")
        if self.trunc_err < 0.0:
            raise ValueError(f"trunc_err must be non-negative, got {self.trunc_err}")
        if self.iter_max < 1:
            raise ValueError(f"iter_max must be positive, got {self.iter_max}")
        if not isinstance(self.compress_scheme, CompressScheme):
            raise ValueError(f"Unsupported compress scheme: {self.compress_scheme!r}")


def truncated_svd(
    mat: jax.Array,
    d_min: int,
    d_max: int,
    trunc_err: float,
) -> tuple[jax.Array, jax.Array, jax.Array, float]:
    """SVD of ``mat`` truncated to the smallest rank within ``trunc_err``.

    Returns ``(u, s, vh, discarded)`` where ``discarded`` is the relative
    squared singular-value weight that was dropped. The rank is clamped to
    ``[d_min, d_max]`` and to the matrix rank.
    """
    u, s, vh = jnp.linalg.svd(mat, full_matrices=False)
    weights = np.asarray(s) ** 2
    n = weights.shape[0]
    total = float(weights.sum())
    if total == 0.0:
        k = max(1, min(d_min, n))
        return u[:, :k], s[:k], vh[:k, :], 0.0
    # tail[k] is the relative weight dropped when keeping k values
    tail = np.append(np.cumsum(weights[::-1])[::-1], 0.0) / total
    k = int(np.argmax(tail <= trunc_err))
    k = max(k, min(d_min, n))
    k = max(1, min(k, d_max, n))
    return u[:, :k], s[:k], vh[:k, :], float(tail[k])
