"""
Clamped B-spline basis on a 1d grid, used to represent velocity distributions.

A basis of order N on a grid of K nodes has K+N-1 functions; each is a piecewise
polynomial of degree N, and at most N+1 of them are nonzero at any point.
Order 0 gives a histogram, 1 linear interpolation, 3 cubic splines.
"""
from __future__ import annotations
from typing import Tuple

import numpy as np
from numpy.polynomial.legendre import leggauss
from scipy.interpolate import BSpline
from scipy.linalg import lstsq, solveh_banded

Array = np.ndarray


class BsplineBasis:
    """
    Parameters
    ----------
    grid  : strictly increasing nodes
    order : polynomial degree N >= 0
    """

    def __init__(self, grid, order: int = 3):
        self.grid = np.asarray(grid, dtype=float)
        self.order = int(order)
        if self.order < 0:
            raise ValueError("BsplineBasis: order must be non-negative")
        if self.grid.ndim != 1 or self.grid.size < 2:
            raise ValueError("BsplineBasis: grid must have at least two nodes")
        if np.any(np.diff(self.grid) <= 0) or not np.all(np.isfinite(self.grid)):
            raise ValueError("BsplineBasis: grid must be finite and strictly increasing")
        N = self.order
        self.knots = np.concatenate([np.full(N, self.grid[0]), self.grid, np.full(N, self.grid[-1])])
        self.num_values = self.grid.size + N - 1

    @property
    def xmin(self) -> float:
        return float(self.grid[0])

    @property
    def xmax(self) -> float:
        return float(self.grid[-1])

    def nonzero_components(self, x: float) -> Tuple[int, Array]:
        """Index of the first nonzero basis function at x, and the N+1 values
        starting from it (all zero outside the grid)."""
        N = self.order
        if not self.xmin <= x <= self.xmax:
            return 0, np.zeros(N + 1)
        t = self.knots
        span = int(np.searchsorted(t, x, side="right")) - 1
        span = min(max(span, N), self.num_values - 1)
        # Cox–de Boor recursion on the N+1 nonzero functions
        values = np.zeros(N + 1)
        values[0] = 1.0
        left = np.zeros(N + 1)
        right = np.zeros(N + 1)
        for j in range(1, N + 1):
            left[j] = x - t[span + 1 - j]
            right[j] = t[span + j] - x
            saved = 0.0
            for r in range(j):
                temp = values[r] / (right[r + 1] + left[j - r])
                values[r] = saved + right[r + 1] * temp
                saved = left[j - r] * temp
            values[j] = saved
        return span - N, values

    def evaluate(self, x: float) -> Array:
        """All basis functions at x."""
        first, vals = self.nonzero_components(x)
        out = np.zeros(self.num_values)
        out[first:first + self.order + 1] = vals[:self.num_values - first]
        return out

    def interpolator(self, amplitudes) -> BSpline:
        """Function Σ_i A_i B_i(x), zero outside the grid."""
        amplitudes = np.asarray(amplitudes, dtype=float)
        if amplitudes.shape != (self.num_values,):
            raise ValueError("BsplineBasis: expected %d amplitudes" % self.num_values)
        return BSpline(self.knots, amplitudes, self.order, extrapolate=False)

    # --------- overlap integrals ---------

    def _gauss_nodes(self):
        xg, wg = leggauss(self.order + 1)
        lo, hi = self.grid[:-1, None], self.grid[1:, None]
        nodes = 0.5 * (hi - lo) * xg + 0.5 * (hi + lo)
        weights = 0.5 * (hi - lo) * wg
        return nodes.ravel(), weights.ravel()

    def integrals(self) -> Array:
        """∫ B_i(x) dx for each basis function."""
        out = np.zeros(self.num_values)
        for x, w in zip(*self._gauss_nodes()):
            first, vals = self.nonzero_components(x)
            out[first:first + self.order + 1] += w * vals
        return out

    def mass_matrix(self) -> Array:
        """Dense overlap matrix M_ij = ∫ B_i(x) B_j(x) dx (Gauss–Legendre, exact)."""
        n, N = self.num_values, self.order
        mat = np.zeros((n, n))
        for x, w in zip(*self._gauss_nodes()):
            first, vals = self.nonzero_components(x)
            sl = slice(first, first + N + 1)
            mat[sl, sl] += w * np.outer(vals, vals)
        return mat

    def mass_matrix_banded(self) -> Array:
        """Upper banded form of the mass matrix, as expected by solveh_banded."""
        mat = self.mass_matrix()
        n, N = self.num_values, self.order
        ab = np.zeros((N + 1, n))
        for k in range(N + 1):
            ab[N - k, k:] = np.diagonal(mat, offset=k)
        return ab


def solve_for_amplitudes(basis: BsplineBasis, rhs, vesc: float) -> Array:
    """Amplitudes A with M A = rhs, where M is the basis mass matrix.

    For order >= 1 with more than two functions, an end of the grid at or beyond
    ±vesc forces the corresponding boundary amplitude to zero: its column is
    removed and the overdetermined system is solved by SVD least squares. Otherwise
    the banded Cholesky solver is used.
    """
    rhs = np.asarray(rhs, dtype=float)
    n = basis.num_values
    skip_first = skip_last = False
    if basis.order >= 1 and n > 2:
        skip_first = basis.xmin <= -vesc * (1 - 1e-8)
        skip_last = basis.xmax >= vesc * (1 - 1e-8)
    if not (skip_first or skip_last):
        return solveh_banded(basis.mass_matrix_banded(), rhs)
    lo, hi = int(skip_first), n - int(skip_last)
    reduced = basis.mass_matrix()[:, lo:hi]
    sol = lstsq(reduced, rhs, lapack_driver="gelsd")[0]
    out = np.zeros(n)
    out[lo:hi] = sol
    return out
