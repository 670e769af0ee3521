"""Boundary-MPS absorption of one lattice line with bounded bond dimension."""
from __future__ import annotations

from vmcpeps import config  # noqa: F401 - JAX config must be imported first

import logging

import jax
import jax.numpy as jnp
from plum import dispatch

from vmcpeps.tn2d.truncate import (
    BMPSTruncatePara,
    SVDCompress,
    Variation1Site,
    Variation2Site,
    truncated_svd,
)

logger = logging.getLogger(__name__)

__all__ = [
    "compress_mpo_product",
    "max_bond_dim",
]


def max_bond_dim(mps: tuple) -> int:
    """Largest virtual bond dimension of a boundary MPS."""
    return max(max(t.shape[0], t.shape[2]) for t in mps)


def _absorb_site(m: jax.Array, w: jax.Array, carry: jax.Array | None) -> jax.Array:
    """Fuse one boundary-MPS tensor with the line tensor below it.

    The result is indexed ``(left, phys, right_mps, right_mpo)``. ``carry`` is
    the ``(k, right_mps, right_mpo)`` remainder left on the previous bond by
    the SVD; at the edge the two left legs are merged instead.
    """
    if carry is None:
        theta = jnp.einsum("apb,xyps->axsby", m, w)
        dl, wl, p, dr, wr = theta.shape
        return theta.reshape(dl * wl, p, dr, wr)
    return jnp.einsum("kax,apb,xyps->ksby", carry, m, w, optimize=[(0, 1), (0, 1)])


def _apply_mpo_exact(mps: tuple, mpo: tuple) -> tuple:
    """Absorb ``mpo`` into ``mps`` without truncation; bond dimensions multiply."""
    out = []
    for m, w in zip(mps, mpo):
        theta = _absorb_site(m, w, None)
        left, p, dr, wr = theta.shape
        out.append(theta.reshape(left, p, dr * wr))
    return tuple(out)


def _zip_up(
    mps: tuple, mpo: tuple, trunc_para: BMPSTruncatePara
) -> tuple[tuple, float]:
    """Apply MPO with on-the-fly truncated SVD, left to right.

    The result is left-canonical with the norm carried by the last tensor.
    Returns the new MPS and the largest discarded weight over all bonds.
    """
    new = []
    carry = None
    discarded = 0.0

    for i, (m, w) in enumerate(zip(mps, mpo)):
        theta = _absorb_site(m, w, carry)
        left_dim, phys_dim, dr, wr = theta.shape

        if i == len(mps) - 1:
            new.append(theta.reshape(left_dim, phys_dim, dr * wr))
            break

        mat = theta.reshape(left_dim * phys_dim, dr * wr)
        U, S, Vh, err = truncated_svd(
            mat, trunc_para.d_min, trunc_para.d_max, trunc_para.trunc_err
        )
        k = S.shape[0]
        discarded = max(discarded, err)

        new.append(U.reshape(left_dim, phys_dim, k))
        S_c = S.astype(Vh.dtype)
        carry = (S_c[:, None] * Vh).reshape(k, dr, wr)

    return tuple(new), discarded


# --------------------------------------------------------------------------- #
# Overlap environments between the result and the implicit MPO-MPS product
# --------------------------------------------------------------------------- #


def _optimal_tensor(L, m, w, R):
    # M'[rl, pout, rr] = sum L[Dl, wl, rl] * m[Dl, pin, Dr]
    #                     * w[wl, wr, pin, pout] * R[Dr, wr, rr]
    return jnp.einsum(
        "dpr,dla,lwpq,rwb->aqb",
        m,
        L,
        w,
        R,
        optimize=[(1, 0), (2, 0), (1, 0)],
    )


def _optimal_two_site(L, m0, w0, m1, w1, R):
    """Projection of the target onto the two sites (i, i+1), shape (a, q0, q1, b)."""
    half = jnp.einsum("dla,dpr,lwpq->aqrw", L, m0, w0, optimize=[(0, 1), (0, 1)])
    half = jnp.einsum("aqrw,rsx,wyst->aqtxy", half, m1, w1, optimize=[(0, 1), (0, 1)])
    return jnp.einsum("aqtxy,xyb->aqtb", half, R)


def _update_left(L, m, w, r):
    return jnp.einsum(
        "dpr,dla,lwpq,aqb->rwb",
        m,
        L,
        w,
        r.conj(),
        optimize=[(1, 0), (2, 0), (1, 0)],
    )


def _update_right(R, m, w, r):
    return jnp.einsum(
        "aqb,rwb,lwpq,dpr->dla",
        r.conj(),
        R,
        w,
        m,
        optimize=[(1, 0), (2, 0), (1, 0)],
    )


def _build_left_envs(
    mps: tuple, mpo: tuple, result: list, dtype: jnp.dtype
) -> list[jax.Array]:
    """Build all left overlap environments L̃[i] from left to right.

    L̃[i] contracts sites :i of the implicit MPO-MPS product with the result.
    Shape: L̃[i][mps_left, mpo_left, result_left]
    """
    n_sites = len(mps)
    left_envs = [None] * n_sites
    L = jnp.ones((1, 1, 1), dtype=dtype)
    for i in range(n_sites):
        left_envs[i] = L
        if i < n_sites - 1:
            L = _update_left(L, mps[i], mpo[i], result[i])
    return left_envs


# --------------------------------------------------------------------------- #
# One-site sweeps
# --------------------------------------------------------------------------- #


def _one_site_sweep_lr(
    mps: tuple, mpo: tuple, result: list, right_envs: list, dtype: jnp.dtype
) -> tuple[list[jax.Array], list[jax.Array]]:
    """Left-to-right one-site sweep, QR gauge moves, centre ends on the last site."""
    n_sites = len(mps)
    new_result = list(result)
    left_envs = [None] * n_sites
    L = jnp.ones((1, 1, 1), dtype=dtype)

    for i in range(n_sites):
        left_envs[i] = L
        optimal = _optimal_tensor(L, mps[i], mpo[i], right_envs[i])

        if i == n_sites - 1:
            new_result[i] = optimal
            break

        left_dim, phys_dim, right_dim = optimal.shape
        A, C = jnp.linalg.qr(optimal.reshape(left_dim * phys_dim, right_dim))
        new_tensor = A.reshape(left_dim, phys_dim, A.shape[1])
        new_result[i] = new_tensor
        # Absorb C so the state is unchanged while the centre moves right
        new_result[i + 1] = jnp.einsum("ab,bpr->apr", C, new_result[i + 1])
        L = _update_left(L, mps[i], mpo[i], new_tensor)

    return new_result, left_envs


def _one_site_sweep_rl(
    mps: tuple, mpo: tuple, result: list, left_envs: list, dtype: jnp.dtype
) -> tuple[list[jax.Array], list[jax.Array]]:
    """Right-to-left one-site sweep, LQ gauge moves, centre ends on the first site."""
    n_sites = len(mps)
    new_result = list(result)
    right_envs = [None] * n_sites
    R = jnp.ones((1, 1, 1), dtype=dtype)

    for i in range(n_sites - 1, -1, -1):
        right_envs[i] = R
        optimal = _optimal_tensor(left_envs[i], mps[i], mpo[i], R)

        if i == 0:
            new_result[i] = optimal
            break

        # LQ via QR on transpose
        left_dim, phys_dim, right_dim = optimal.shape
        Q_t, R_t = jnp.linalg.qr(optimal.reshape(left_dim, phys_dim * right_dim).T)
        B = Q_t.T
        C = R_t.T
        new_tensor = B.reshape(B.shape[0], phys_dim, right_dim)
        new_result[i] = new_tensor
        new_result[i - 1] = jnp.einsum("lpr,rb->lpb", new_result[i - 1], C)
        R = _update_right(R, mps[i], mpo[i], new_tensor)

    return new_result, right_envs


# --------------------------------------------------------------------------- #
# Two-site sweeps
# --------------------------------------------------------------------------- #


def _two_site_sweep_lr(
    mps: tuple,
    mpo: tuple,
    result: list,
    right_envs: list,
    trunc_para: BMPSTruncatePara,
    dtype: jnp.dtype,
) -> tuple[list[jax.Array], list[jax.Array], float]:
    n_sites = len(mps)
    new_result = list(result)
    left_envs = [None] * n_sites
    L = jnp.ones((1, 1, 1), dtype=dtype)
    discarded = 0.0

    for i in range(n_sites - 1):
        left_envs[i] = L
        theta = _optimal_two_site(
            L, mps[i], mpo[i], mps[i + 1], mpo[i + 1], right_envs[i + 1]
        )
        a, q0, q1, b = theta.shape
        U, S, Vh, err = truncated_svd(
            theta.reshape(a * q0, q1 * b),
            trunc_para.d_min,
            trunc_para.d_max,
            trunc_para.trunc_err,
        )
        k = S.shape[0]
        discarded = max(discarded, err)
        new_result[i] = U.reshape(a, q0, k)
        new_result[i + 1] = (S.astype(Vh.dtype)[:, None] * Vh).reshape(k, q1, b)
        L = _update_left(L, mps[i], mpo[i], new_result[i])

    left_envs[n_sites - 1] = L
    return new_result, left_envs, discarded


def _two_site_sweep_rl(
    mps: tuple,
    mpo: tuple,
    result: list,
    left_envs: list,
    trunc_para: BMPSTruncatePara,
    dtype: jnp.dtype,
) -> tuple[list[jax.Array], list[jax.Array], float]:
    n_sites = len(mps)
    new_result = list(result)
    right_envs = [None] * n_sites
    R = jnp.ones((1, 1, 1), dtype=dtype)
    right_envs[n_sites - 1] = R
    discarded = 0.0

    for i in range(n_sites - 1, 0, -1):
        theta = _optimal_two_site(
            left_envs[i - 1], mps[i - 1], mpo[i - 1], mps[i], mpo[i], R
        )
        a, q0, q1, b = theta.shape
        U, S, Vh, err = truncated_svd(
            theta.reshape(a * q0, q1 * b),
            trunc_para.d_min,
            trunc_para.d_max,
            trunc_para.trunc_err,
        )
        k = S.shape[0]
        discarded = max(discarded, err)
        new_result[i] = Vh.reshape(k, q1, b)
        new_result[i - 1] = (U * S.astype(U.dtype)[None, :]).reshape(a, q0, k)
        R = _update_right(R, mps[i], mpo[i], new_result[i])
        right_envs[i - 1] = R

    return new_result, right_envs, discarded


def _converged(norm_prev: float | None, norm: float, tol: float) -> bool:
    if norm_prev is None:
        return False
    return abs(norm - norm_prev) <= tol * max(abs(norm), 1e-300)


# --------------------------------------------------------------------------- #
# Dispatch on compression scheme
# --------------------------------------------------------------------------- #


@dispatch
def compress_mpo_product(
    scheme: SVDCompress,
    mps: tuple,
    mpo: tuple,
    trunc_para: BMPSTruncatePara,
) -> tuple[tuple, float]:
    """Absorb ``mpo`` into ``mps``; returns the new MPS and its discarded weight."""
    del scheme
    if len(mps) == 1:
        return _apply_mpo_exact(mps, mpo), 0.0
    return _zip_up(mps, mpo, trunc_para)


@dispatch
def compress_mpo_product(
    scheme: Variation1Site,
    mps: tuple,
    mpo: tuple,
    trunc_para: BMPSTruncatePara,
) -> tuple[tuple, float]:
    del scheme
    if len(mps) == 1:
        return _apply_mpo_exact(mps, mpo), 0.0
    guess, discarded = _zip_up(mps, mpo, trunc_para)
    dtype = jnp.result_type(mps[0].dtype, mpo[0].dtype)
    result = list(guess)
    left_envs = _build_left_envs(mps, mpo, result, dtype)

    norm_prev = None
    for sweep in range(trunc_para.iter_max):
        result, right_envs = _one_site_sweep_rl(mps, mpo, result, left_envs, dtype)
        result, left_envs = _one_site_sweep_lr(mps, mpo, result, right_envs, dtype)
        norm = float(jnp.linalg.norm(result[-1]))
        if _converged(norm_prev, norm, trunc_para.convergence_tol):
            break
        norm_prev = norm

    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("one-site variation: sweeps=%d norm=%.12e", sweep + 1, norm)
    return tuple(result), discarded


@dispatch
def compress_mpo_product(
    scheme: Variation2Site,
    mps: tuple,
    mpo: tuple,
    trunc_para: BMPSTruncatePara,
) -> tuple[tuple, float]:
    del scheme
    if len(mps) == 1:
        return _apply_mpo_exact(mps, mpo), 0.0
    guess, discarded = _zip_up(mps, mpo, trunc_para)
    dtype = jnp.result_type(mps[0].dtype, mpo[0].dtype)
    result = list(guess)
    left_envs = _build_left_envs(mps, mpo, result, dtype)

    norm_prev = None
    for sweep in range(trunc_para.iter_max):
        result, right_envs, err_rl = _two_site_sweep_rl(
            mps, mpo, result, left_envs, trunc_para, dtype
        )
        result, left_envs, err_lr = _two_site_sweep_lr(
            mps, mpo, result, right_envs, trunc_para, dtype
        )
        discarded = max(err_rl, err_lr)
        norm = float(jnp.linalg.norm(result[-1]))
        if _converged(norm_prev, norm, trunc_para.convergence_tol):
            break
        norm_prev = norm

    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("two-site variation: sweeps=%d norm=%.12e", sweep + 1, norm)
    return tuple(result), discarded
