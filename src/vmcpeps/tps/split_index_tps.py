"""Split-index tensor product state container."""
from __future__ import annotations

from vmcpeps import config  # noqa: F401 - JAX config must be imported first

from typing import TYPE_CHECKING, Sequence

import jax
import jax.numpy as jnp
import numpy as np
from flax import nnx

from vmcpeps.tn2d.lattice import SiteIdx

if TYPE_CHECKING:
    from jax.typing import DTypeLike

__all__ = ["SplitIndexTPS", "random_tensor"]


def random_tensor(
    rngs,
    shape: tuple[int, ...],
    dtype: "DTypeLike",
) -> jax.Array:
    """Uniform random site tensor drawn from ``rngs.params``.

    Complex dtypes draw the real and imaginary parts separately and halve the
    sum, so every entry stays inside the unit square.
    """
    dtype = jnp.dtype(dtype)
    if not jnp.issubdtype(dtype, jnp.complexfloating):
        return jax.random.uniform(rngs.params(), shape, dtype=dtype)
    part_dtype = jnp.finfo(dtype).dtype
    re, im = (jax.random.uniform(rngs.params(), shape, dtype=part_dtype) for _ in range(2))
    return (0.5 * jax.lax.complex(re, im)).astype(dtype)


class SplitIndexTPS(nnx.Module):
    """Open-boundary TPS stored with the physical index split off.

    Site ``(r, c)`` holds a ``(phys, up, down, left, right)`` parameter;
    ``sitps[site][value]`` is the lattice tensor selected when the site is in
    basis state ``value``.
    """

    tensors: list[list[nnx.Param]] = nnx.data()

    @staticmethod
    def site_dims(
        row: int, col: int, n_rows: int, n_cols: int, bond_dim: int
    ) -> tuple[int, int, int, int]:
        up = 1 if row == 0 else bond_dim
        down = 1 if row == n_rows - 1 else bond_dim
        left = 1 if col == 0 else bond_dim
        right = 1 if col == n_cols - 1 else bond_dim
        return up, down, left, right

    def __init__(
        self,
        *,
        rngs: nnx.Rngs | None = None,
        shape: tuple[int, int] | None = None,
        bond_dim: int | None = None,
        phys_dim: int = 2,
        dtype: "DTypeLike" = jnp.complex128,
        tensors: Sequence[Sequence[jax.Array]] | None = None,
    ):
        if tensors is not None:
            self._init_from_tensors(tensors)
            return
        if rngs is None or shape is None or bond_dim is None:
            raise ValueError("rngs, shape and bond_dim are required without tensors")
        self.shape = (int(shape[0]), int(shape[1]))
        if self.shape[0] < 1 or self.shape[1] < 1:
            raise ValueError(f"Lattice shape must be positive, got {shape}")
        self.bond_dim = int(bond_dim)
        self.phys_dim = int(phys_dim)
        self.dtype = jnp.dtype(dtype)

        n_rows, n_cols = self.shape
        self.tensors = [
            [
                nnx.Param(
                    random_tensor(
                        rngs,
                        (
                            self.phys_dim,
                            *self.site_dims(r, c, n_rows, n_cols, self.bond_dim),
                        ),
                        self.dtype,
                    ),
                    dtype=self.dtype,
                )
                for c in range(n_cols)
            ]
            for r in range(n_rows)
        ]

    @classmethod
    def from_tensors(cls, tensors: Sequence[Sequence[jax.Array]]) -> "SplitIndexTPS":
        """Wrap an existing grid of ``(phys, up, down, left, right)`` tensors."""
        return cls(tensors=tensors)

    def _init_from_tensors(self, tensors: Sequence[Sequence[jax.Array]]) -> None:
        n_rows = len(tensors)
        if n_rows == 0 or len(tensors[0]) == 0:
            raise ValueError("SplitIndexTPS requires a non-empty lattice.")
        n_cols = len(tensors[0])
        if any(len(row) != n_cols for row in tensors):
            raise ValueError("All rows of the lattice must have the same length.")
        grid = [[jnp.asarray(t) for t in row] for row in tensors]
        phys_dims = {t.shape[0] for row in grid for t in row}
        if any(t.ndim != 5 for row in grid for t in row) or len(phys_dims) != 1:
            raise ValueError(
                "Site tensors must be (phys, up, down, left, right) with one common phys dim."
            )
        dtype = jnp.result_type(*[t for row in grid for t in row])

        self.shape = (n_rows, n_cols)
        self.bond_dim = max(max(t.shape[1:]) for row in grid for t in row)
        self.phys_dim = phys_dims.pop()
        self.dtype = jnp.dtype(dtype)
        self.tensors = [
            [nnx.Param(t.astype(dtype), dtype=dtype) for t in row] for row in grid
        ]

    @property
    def rows(self) -> int:
        return self.shape[0]

    @property
    def cols(self) -> int:
        return self.shape[1]

    def __getitem__(self, site: SiteIdx) -> jax.Array:
        row, col = site
        return self.tensors[row][col][...]

    def project(self, configuration) -> list[list[jax.Array]]:
        """Slice every site down to the tensor selected by ``configuration``."""
        configuration = np.asarray(configuration)
        if configuration.shape != self.shape:
            raise ValueError(
                f"Configuration shape {configuration.shape} does not match lattice {self.shape}"
            )
        if configuration.min() < 0 or configuration.max() >= self.phys_dim:
            raise ValueError(
                f"Configuration values must lie in [0, {self.phys_dim}), "
                f"got range [{configuration.min()}, {configuration.max()}]"
            )
        return [
            [self[(r, c)][int(configuration[r, c])] for c in range(self.cols)]
            for r in range(self.rows)
        ]
