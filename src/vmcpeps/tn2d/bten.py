"""Boundary-tensor windows along one line of the sliced network.

Every kernel works in the *row frame*: site tensors are ``(up, down, left,
right)``, the top boundary MPS tensor is ``(left, down, right)`` and the bottom
one ``(left, up, right)``. Column sweeps are handled by the caller transposing
the lattice into this frame.

One-line environments have legs ``(top, mid, bottom)``; two-line
environments ``(top, mid0, mid1, bottom)``.
"""
from __future__ import annotations

from vmcpeps import config  # noqa: F401 - JAX config must be imported first

from typing import Sequence

import jax
import jax.numpy as jnp

__all__ = [
    "HEAD",
    "TAIL",
    "BTenCache",
    "trivial_env",
    "absorb_head",
    "absorb_tail",
    "close_window",
    "hole_env",
]

HEAD = 0
TAIL = 1


class BTenCache:
    """Window of boundary tensors for one line (or a pair of lines).

    Two stacks grow inward from the two ends of the line. Entry ``k`` of the
    head stack is the contraction of positions ``[0, k)``; entry ``k`` of the
    tail stack the contraction of positions ``[length - k, length)``. Entries
    are only pushed and popped at the inner end, so every stored entry is
    consistent with the boundary MPS the cache was seeded from.
    """

    def __init__(
        self,
        orientation: str,
        line: int,
        n_lines: int,
        length: int,
        bmps_version: int,
    ):
        self.orientation = orientation
        self.line = line
        self.n_lines = n_lines
        self.length = length
        self.bmps_version = bmps_version
        self._stacks: tuple[list[jax.Array], list[jax.Array]] = ([], [])

    def __repr__(self) -> str:
        return (
            f"BTenCache(orientation={self.orientation!r}, line={self.line}, "
            f"n_lines={self.n_lines}, head={self.size(HEAD)}, tail={self.size(TAIL)})"
        )

    def size(self, side: int) -> int:
        return len(self._stacks[side])

    def has(self, side: int, index: int) -> bool:
        return 0 <= index < len(self._stacks[side])

    def get(self, side: int, index: int) -> jax.Array:
        if not self.has(side, index):
            name = "head" if side == HEAD else "tail"
            raise RuntimeError(
                f"Boundary tensor {name}[{index}] is not cached on line {self.line} "
                f"({self.orientation}); cached {name} entries: {self.size(side)}."
            )
        return self._stacks[side][index]

    def top(self, side: int) -> jax.Array:
        return self.get(side, self.size(side) - 1)

    def reset(self, side: int, env: jax.Array) -> None:
        self._stacks[side].clear()
        self._stacks[side].append(env)

    def push(self, side: int, env: jax.Array) -> None:
        if self.size(side) > self.length:
            raise RuntimeError(f"Boundary tensors already cover line {self.line}.")
        self._stacks[side].append(env)

    def pop(self, side: int) -> None:
        # The trivial edge entry stays; popping it would leave nothing to grow from
        if self.size(side) < 2:
            raise RuntimeError(
                f"Cannot move past the edge of line {self.line} ({self.orientation})."
            )
        self._stacks[side].pop()

    def next_position(self, side: int) -> int:
        """Lattice position absorbed by the next push on ``side``."""
        if side == HEAD:
            return self.size(HEAD) - 1
        return self.length - self.size(TAIL)


def trivial_env(n_lines: int, dtype) -> jax.Array:
    return jnp.ones((1,) * (n_lines + 2), dtype=dtype)


def absorb_head(
    env: jax.Array,
    top: jax.Array,
    column: Sequence[jax.Array],
    bottom: jax.Array,
) -> jax.Array:
    """Grow a head-side environment by one column of one or two sites."""
    if len(column) == 1:
        # env: (a, c, e), top: (a, u, b), site: (u, v, c, d), bottom: (e, v, f)
        return jnp.einsum(
            "ace,aub,uvcd,evf->bdf",
            env, top, column[0], bottom,
            optimize=[(0, 1), (0, 2), (0, 1)],
        )
    s0, s1 = column
    # site0: (u, v, l, r), site1: (v, w, x, y)
    return jnp.einsum(
        "alxe,aub,uvlr,vwxy,ewf->bryf",
        env, top, s0, s1, bottom,
        optimize=[(0, 1), (0, 3), (0, 2), (0, 1)],
    )


def absorb_tail(
    env: jax.Array,
    top: jax.Array,
    column: Sequence[jax.Array],
    bottom: jax.Array,
) -> jax.Array:
    """Grow a tail-side environment by one column of one or two sites."""
    if len(column) == 1:
        return jnp.einsum(
            "bdf,aub,uvcd,evf->ace",
            env, top, column[0], bottom,
            optimize=[(0, 1), (0, 2), (0, 1)],
        )
    s0, s1 = column
    return jnp.einsum(
        "bryf,aub,uvlr,vwxy,ewf->alxe",
        env, top, s0, s1, bottom,
        optimize=[(0, 1), (0, 3), (0, 2), (0, 1)],
    )


def close_window(
    head: jax.Array,
    tops: Sequence[jax.Array],
    columns: Sequence[Sequence[jax.Array]],
    bottoms: Sequence[jax.Array],
    tail: jax.Array,
) -> jax.Array:
    """Contract a window of columns between a head and a tail environment."""
    env = head
    for top, column, bottom in zip(tops, columns, bottoms):
        env = absorb_head(env, top, column, bottom)
    return jnp.sum(env * tail)


def hole_env(
    head: jax.Array,
    top: jax.Array,
    bottom: jax.Array,
    tail: jax.Array,
) -> jax.Array:
    """Environment of a single site, shape (up, down, left, right)."""
    return jnp.einsum(
        "ace,aub,evf,bdf->uvcd", head, top, bottom, tail,
        optimize=[(0, 1), (0, 1), (0, 1)],
    )
