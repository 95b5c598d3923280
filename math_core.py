"""
Numerical primitives used by the action finders and the DF integration engine.

- bracketed root finding (scipy.optimize.brentq) and the turning-point search
  that walks from an interior point toward a singular or infinite endpoint;
- integration of a canonical momentum between two turning points;
- N-dimensional adaptive cubature (scipy.integrate.cubature, Genz-Malik rule)
  with an evaluation budget;
- N-dimensional importance sampling with an adaptive piecewise-constant envelope.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import logging
import math
import numpy as np
from scipy.integrate import quad, cubature
from scipy.optimize import brentq
from scipy.stats import qmc

from constants import (ACCURACY_ACTION, DEFAULT_MAX_EVALS, DEFAULT_REL_TOL,
                       DEFAULT_SAMPLER_POOL, MAX_ROOT_STEPS, MIN_SAMPLER_POOL)
from errors import NoRootInBracket

Array = np.ndarray

log = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
#                               1D ROOTS / INTEGRALS
# -----------------------------------------------------------------------------

def find_root(fnc: Callable[[float], float], a: float, b: float) -> float:
    """Root of fnc on [a, b]; raises NoRootInBracket if there is no sign change."""
    lo, hi = min(a, b), max(a, b)
    flo, fhi = fnc(lo), fnc(hi)
    if flo == 0:
        return lo
    if fhi == 0:
        return hi
    if not (math.isfinite(flo) and math.isfinite(fhi)) or flo * fhi > 0:
        raise NoRootInBracket("No sign change of f on [%g, %g]: f=%g, %g" % (lo, hi, flo, fhi))
    xtol = max((hi - lo) * 1e-15, 1e-300)
    return brentq(fnc, lo, hi, xtol=xtol)


def turning_point(fnc: Callable[[float], float], x_inside: float, limit: float,
                  max_steps: int = MAX_ROOT_STEPS) -> float:
    """Locate the zero of fnc between an interior point and an endpoint.

    Starting from ``x_inside`` (where fnc > 0), trial points approach ``limit``
    geometrically: for a finite limit the distance to it is halved at each step,
    for an infinite one the step away from ``x_inside`` is doubled. The first trial
    point with fnc <= 0 closes the bracket, and brentq refines the root.

    Returns ``x_inside`` if fnc(x_inside) <= 0 (the point itself is a turning point),
    and ``limit`` if a finite limit is approached without a sign change.
    """
    if not fnc(x_inside) > 0:
        return x_inside
    prev = x_inside
    if math.isinf(limit):
        sign = 1.0 if limit > 0 else -1.0
        step = max(abs(x_inside), 1.0)
        for _ in range(max_steps):
            x = prev + sign * step
            fx = fnc(x)
            if fx <= 0:
                return find_root(fnc, prev, x)
            if math.isnan(fx):
                break
            prev = x
            step *= 2.0
        raise NoRootInBracket("No turning point between %g and %g" % (x_inside, limit))
    for k in range(1, max_steps):
        x = limit + (x_inside - limit) * 0.5**k
        if x == limit:
            break
        fx = fnc(x)
        if not math.isfinite(fx):
            continue
        if fx <= 0:
            return find_root(fnc, prev, x)
        prev = x
    return limit


def integrate_momentum(p2: Callable[[float], float], xmin: float, xmax: float,
                       rel_tol: float = ACCURACY_ACTION) -> float:
    """∫ sqrt(p2(x)) dx over [xmin, xmax] between two turning points.

    The substitution x = xmin + (xmax-xmin) y^2 (3-2y) has zero derivative at both
    ends, which cancels the inverse square-root behaviour of dx/p at the turning
    points and leaves a smooth integrand in y ∈ [0,1]. Values where p2 <= 0 or is
    not finite (roundoff at the ends) contribute zero.
    """
    if not xmax > xmin:
        return 0.0
    dx = xmax - xmin

    def integrand(y):
        val = p2(xmin + dx * y * y * (3 - 2 * y))
        if not (val > 0 and math.isfinite(val)):
            return 0.0
        return math.sqrt(val) * dx * 6 * y * (1 - y)

    return integrate_1d(integrand, 0.0, 1.0, rel_tol, "integrate_momentum")


def integrate_1d(fnc: Callable[[float], float], a: float, b: float, rel_tol: float,
                 label: str = "integrate_1d") -> float:
    """Adaptive quadrature of a scalar function; a result short of rel_tol is logged, not raised."""
    result = quad(fnc, a, b, epsabs=0.0, epsrel=rel_tol, limit=200, full_output=1)
    if len(result) > 3:
        # quadpack stopped short of rel_tol; keep its best value
        log.warning("%s: %s on [%g, %g], value %.10g +- %.2g",
                    label, result[3].splitlines()[0], a, b, result[0], result[1])
    return result[0]


# -----------------------------------------------------------------------------
#                               N-DIMENSIONAL CUBATURE
# -----------------------------------------------------------------------------

def _evals_per_region(ndim: int) -> int:
    # scipy evaluates the higher rule twice per region (estimate, then error) and
    # the embedded lower rule once
    if ndim == 1:
        return 2 * 21 + 10
    lower = 1 + 2 * ndim * (ndim + 1)
    return 2 * (lower + 2**ndim) + lower


def integrate_ndim(
    fnc: Callable[[Array], Array],
    lower,
    upper,
    rel_tol: float = DEFAULT_REL_TOL,
    max_evals: int = DEFAULT_MAX_EVALS,
) -> Tuple[Array, Array]:
    """Adaptive cubature of a vector-valued function over a box.

    Parameters
    ----------
    fnc : callable taking an (npoints, ndim) array and returning (npoints, nvalues)
    lower, upper : box corners
    rel_tol : required relative error; each component is converged when its error
        is below rel_tol times the largest component of a first coarse estimate
    max_evals : bound on the number of function evaluations, the coarse estimate
        included; when it is exhausted the best estimate is returned and a warning
        is logged

    Returns
    -------
    values, errors : arrays of length nvalues
    """
    lower = np.asarray(lower, dtype=float)
    upper = np.asarray(upper, dtype=float)
    ndim = lower.size
    rule = "genz-malik" if ndim >= 2 else "gk21"
    per_region = _evals_per_region(ndim)
    per_split = per_region * 2**ndim
    if max_evals < per_region:
        raise ValueError("integrate_ndim: max_evals=%d is below the %d evaluations of "
                         "one region in %d dims" % (max_evals, per_region, ndim))

    # coarse estimate from a single region sets the absolute error scale
    pilot = cubature(fnc, lower, upper, rule=rule, rtol=np.inf, max_subdivisions=1)
    estimate = np.atleast_1d(pilot.estimate)
    error = np.atleast_1d(pilot.error)
    scale = float(np.max(np.abs(estimate)))
    if scale == 0.0 or not math.isfinite(scale):
        return estimate, error
    atol = rel_tol * scale
    if np.all(error <= atol + rel_tol * np.abs(estimate)):
        return estimate, error

    # the refinement evaluates the whole box again, then 2^ndim regions per split
    remaining = max_evals - per_region
    if remaining < per_region + per_split:
        log.warning("integrate_ndim: evaluation budget of %d exhausted in %d dims by the "
                    "first estimate (max relative error %.3g)", max_evals, ndim,
                    float(np.max(error)) / scale)
        return estimate, error

    max_subdivisions = (remaining - per_region) // per_split
    res = cubature(fnc, lower, upper, rule=rule, rtol=rel_tol, atol=atol,
                   max_subdivisions=max_subdivisions)
    if res.status != "converged":
        log.warning("integrate_ndim: evaluation budget of %d exhausted in %d dims "
                    "(max relative error %.3g)", max_evals, ndim,
                    float(np.max(np.atleast_1d(res.error))) / scale)
    return np.atleast_1d(res.estimate), np.atleast_1d(res.error)


# -----------------------------------------------------------------------------
#                               N-DIMENSIONAL SAMPLING
# -----------------------------------------------------------------------------

@dataclass
class _Cell:
    lower: Array
    upper: Array
    index: Array          # indices of pool points inside the cell
    final: bool = False

    @property
    def volume(self) -> float:
        return float(np.prod(self.upper - self.lower))


def _partition(points: Array, values: Array, max_cells: int, min_points: int) -> list:
    """Recursive halving of the unit cube, splitting the cell with the largest
    envelope mass (volume x max f) along the dimension that reduces it most."""
    ndim = points.shape[1]
    cells = [_Cell(np.zeros(ndim), np.ones(ndim), np.arange(len(points)))]
    while len(cells) < max_cells:
        scores = [-1.0 if c.final or len(c.index) < 2 * min_points
                  else c.volume * values[c.index].max() for c in cells]
        k = int(np.argmax(scores))
        if scores[k] <= 0:
            break
        cell = cells[k]
        best = None
        for dim in range(ndim):
            mid = 0.5 * (cell.lower[dim] + cell.upper[dim])
            left = points[cell.index, dim] < mid
            nleft = int(left.sum())
            if nleft < min_points or len(cell.index) - nleft < min_points:
                continue
            mass = 0.5 * cell.volume * (values[cell.index[left]].max() + values[cell.index[~left]].max())
            if best is None or mass < best[0]:
                best = (mass, dim, mid, left)
        if best is None or best[0] >= scores[k]:
            cell.final = True
            continue
        _, dim, mid, left = best
        upper_left = cell.upper.copy(); upper_left[dim] = mid
        lower_right = cell.lower.copy(); lower_right[dim] = mid
        cells[k] = _Cell(cell.lower, upper_left, cell.index[left])
        cells.append(_Cell(lower_right, cell.upper, cell.index[~left]))
    return cells


def sample_ndim(
    fnc: Callable[[Array], Array],
    lower,
    upper,
    num_samples: int,
    max_evals: int = DEFAULT_MAX_EVALS,
    pool_size: int = DEFAULT_SAMPLER_POOL,
    rng: Optional[np.random.Generator] = None,
) -> Tuple[Array, float, float]:
    """Draw points distributed as a non-negative function over a box.

    Step S1: evaluate f on a scrambled Sobol pool covering the box.
    Step S2: partition the box into cells; the envelope in each cell is the
             largest pool value found there (with a floor for empty cells).
    Step S3: draw candidates from the piecewise-constant envelope and keep each
             candidate floor(f/envelope + u) times, u ~ U(0,1). The expected
             number of copies is proportional to f, whatever the envelope.
    Step S4: return exactly ``num_samples`` of the accepted points, picked at random.

    Parameters
    ----------
    fnc : callable (npoints, ndim) -> (npoints,) or (npoints, nvalues); the first
        value is sampled
    num_samples : number of output points
    max_evals : bound on the number of function evaluations, the initial pool
        included; the pool takes at most half of it

    Returns
    -------
    points : (num_samples, ndim) array
    integral : estimate of ∫ f over the box
    error : its statistical error
    """
    rng = np.random.default_rng(rng)
    max_evals = int(max_evals)
    if max_evals < 2 * MIN_SAMPLER_POOL:
        raise ValueError("sample_ndim: max_evals must be at least %d" % (2 * MIN_SAMPLER_POOL))
    lower = np.asarray(lower, dtype=float)
    upper = np.asarray(upper, dtype=float)
    ndim = lower.size
    width = upper - lower
    volume = float(np.prod(width))
    num_samples = int(num_samples)
    if num_samples <= 0:
        raise ValueError("sample_ndim: number of samples must be positive")

    def evaluate(unit):
        vals = np.asarray(fnc(lower + unit * width), dtype=float).reshape(len(unit), -1)[:, 0]
        return np.where(np.isfinite(vals) & (vals > 0), vals, 0.0)

    # --- Step S1: initial pool ---
    m = min(int(math.ceil(math.log2(max(pool_size, 2)))), int(math.log2(max_evals // 2)))
    m = max(m, int(math.log2(MIN_SAMPLER_POOL)))
    pool = qmc.Sobol(d=ndim, scramble=True, rng=rng).random_base2(m)
    fpool = evaluate(pool)
    budget = max_evals - len(pool)
    fmax = fpool.max()
    if not fmax > 0:
        raise ValueError("sample_ndim: function is zero everywhere on the initial pool")

    # --- Step S2: envelope ---
    min_points = max(8, 2 * ndim)
    cells = _partition(pool, fpool, max_cells=max(1, len(pool) // (2 * min_points)),
                       min_points=min_points)
    floor = 1e-3 * fmax
    env = np.array([max(fpool[c.index].max(initial=0.0), floor) for c in cells])
    cell_lower = np.array([c.lower for c in cells])
    cell_width = np.array([c.upper - c.lower for c in cells])
    mass = env * np.prod(cell_width, axis=1)
    norm = mass.sum()
    prob = mass / norm

    # --- Step S3: envelope rejection with stochastic rounding ---
    accepted = []
    num_accepted = 0
    weights = []
    num_evals = 0
    efficiency = max(float(np.mean(fpool) / fmax), 1e-3)
    while num_accepted < num_samples and num_evals < budget:
        batch = int(min(budget - num_evals,
                        max(256, 1.2 * (num_samples - num_accepted) / efficiency)))
        ic = rng.choice(len(cells), size=batch, p=prob)
        unit = cell_lower[ic] + rng.random((batch, ndim)) * cell_width[ic]
        fval = evaluate(unit)
        num_evals += batch
        ratio = fval / env[ic]
        weights.append(ratio * norm)
        copies = np.floor(ratio + rng.random(batch)).astype(int)
        if np.any(copies > 0):
            accepted.append(np.repeat(unit, copies, axis=0))
            num_accepted += int(copies.sum())
        efficiency = max(num_accepted / num_evals, 1e-4)

    weights = np.concatenate(weights)
    integral = float(np.mean(weights)) * volume
    error = float(np.std(weights) / math.sqrt(len(weights))) * volume

    # --- Step S4: exactly num_samples points ---
    if num_accepted == 0:
        raise RuntimeError("sample_ndim: no points accepted within %d evaluations" % max_evals)
    accepted = np.concatenate(accepted)
    if num_accepted >= num_samples:
        pick = rng.choice(num_accepted, size=num_samples, replace=False)
    else:
        log.warning("sample_ndim: only %d of %d points accepted within %d evaluations; "
                    "resampling with repetition", num_accepted, num_samples, max_evals)
        pick = rng.choice(num_accepted, size=num_samples, replace=True)
    return lower + accepted[pick] * width, integral, error
