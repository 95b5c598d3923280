"""
Driver routines: moments, projected DF and projections of a galaxy model.

Each driver builds one integrand of ``galaxymodel_integrands``, integrates it
over the unit hypercube of its scaled variables with ``integrate_ndim`` and turns
the raw integrals into physical quantities. Tolerances are advisory: every
result comes with its error estimate, and an exhausted evaluation budget only
produces a warning in the log.
"""
from __future__ import annotations
from typing import Callable, NamedTuple, Optional, Sequence, Tuple

import logging
import math
import numpy as np

from constants import DEFAULT_MAX_EVALS, DEFAULT_REL_TOL
from galaxymodel_integrands import (Diagnostics, DFIntegrandAtPoint, DFIntegrandProjected,
                                    DFIntegrandProjectedMoments, DFIntegrandProjection,
                                    GalaxyModel, MomentMode, SECOND_MOMENT_NAMES)
from math_core import find_root, integrate_ndim

Array = np.ndarray

log = logging.getLogger(__name__)

__all__ = ["GalaxyModel", "MomentMode", "MomentResult", "ProjectedMoments", "SECOND_MOMENT_NAMES",
           "compute_moments", "compute_projected_df", "compute_projected_moments",
           "compute_projection"]


class MomentResult(NamedTuple):
    """Density and velocity moments at a point, one row per DF component.

    ``first_moment`` is <vphi>; ``second_moment`` has the columns of
    ``SECOND_MOMENT_NAMES``. Moments that were not requested are None.
    """
    density: Array
    density_error: Array
    first_moment: Optional[Array] = None
    first_moment_error: Optional[Array] = None
    second_moment: Optional[Array] = None
    second_moment_error: Optional[Array] = None


class ProjectedMoments(NamedTuple):
    surface_density: float
    rms_height: float
    rms_velocity: float
    surface_density_error: float
    rms_height_error: float
    rms_velocity_error: float


def _ratio(num: Array, num_err: Array, den: Array, den_err: Array) -> Tuple[Array, Array]:
    """num/den (0 where den is 0) with relative errors added in quadrature."""
    with np.errstate(divide="ignore", invalid="ignore"):
        value = np.where(den != 0, num / den, 0.0)
        rel2 = (np.where(den != 0, (den_err / den)**2, 0.0)
                + np.where(num != 0, (num_err / num)**2, 0.0))
    return value, np.abs(value) * np.sqrt(rel2)


# ----------------------------- moments at a point -----------------------------

def compute_moments(
    model: GalaxyModel,
    point,
    mode: MomentMode = MomentMode.FIRST | MomentMode.SECOND,
    rel_tol: float = DEFAULT_REL_TOL,
    max_evals: int = DEFAULT_MAX_EVALS,
    diagnostics: Optional[Diagnostics] = None,
) -> MomentResult:
    """
    Density and velocity moments of the DF at a position.

    Parameters
    ----------
    model : galaxy model
    point : (R, z[, phi])
    mode  : which velocity moments besides the density to compute
    rel_tol, max_evals : cubature accuracy and evaluation budget

    Returns
    -------
    MomentResult with arrays of length ``model.num_components``
    """
    fnc = DFIntegrandAtPoint(model, point, mode, diagnostics)
    result, error = integrate_ndim(fnc, np.zeros(3), np.ones(3), rel_tol, max_evals)
    ncomp = model.num_components
    result = result.reshape(fnc.num_moments, ncomp)
    error = error.reshape(fnc.num_moments, ncomp)
    density, density_err = result[0], error[0]

    first = first_err = second = second_err = None
    im = 1
    if fnc.mode & MomentMode.FIRST:
        first, first_err = _ratio(result[im], error[im], density, density_err)
        im += 1
    if fnc.mode & MomentMode.SECOND:
        second, second_err = _ratio(result[im:im + 6], error[im:im + 6], density, density_err)
        second, second_err = second.T, second_err.T
    return MomentResult(density, density_err, first, first_err, second, second_err)


# ----------------------------- projected quantities -----------------------------

def compute_projected_df(
    model: GalaxyModel,
    R: float,
    vz: float,
    vz_error: float = 0.0,
    rel_tol: float = DEFAULT_REL_TOL,
    max_evals: int = DEFAULT_MAX_EVALS,
    diagnostics: Optional[Diagnostics] = None,
) -> float:
    """
    DF integrated along the line of sight z and over the transverse velocities at
    cylindrical radius R and line-of-sight velocity vz, optionally convolved with a
    Gaussian velocity error of width ``vz_error``.
    """
    fnc = DFIntegrandProjected(model, R, vz, vz_error, diagnostics)
    lower = np.zeros(fnc.num_vars)
    upper = np.ones(fnc.num_vars)
    if fnc.vz_error == 0:
        # restrict z to the range where a star with this vz can be bound
        if not fnc.turning_condition(0.5) > 0:
            return 0.0
        lower[0] = find_root(fnc.turning_condition, 0.0, 0.5)
        upper[0] = find_root(fnc.turning_condition, 0.5, 1.0)
    result, _ = integrate_ndim(fnc, lower, upper, rel_tol, max_evals)
    return float(result[0])


def compute_projected_moments(
    model: GalaxyModel,
    R: float,
    rel_tol: float = DEFAULT_REL_TOL,
    max_evals: int = DEFAULT_MAX_EVALS,
    diagnostics: Optional[Diagnostics] = None,
) -> ProjectedMoments:
    """Surface density, rms height and rms line-of-sight velocity at radius R."""
    fnc = DFIntegrandProjectedMoments(model, R, diagnostics)
    result, error = integrate_ndim(fnc, np.zeros(4), np.ones(4), rel_tol, max_evals)
    sigma, sigma_err = float(result[0]), float(error[0])
    rms = [0.0, 0.0]
    rms_err = [0.0, 0.0]
    if sigma > 0:
        for k in range(2):
            mean, mean_err = _ratio(result[k + 1], error[k + 1], sigma, sigma_err)
            rms[k] = math.sqrt(max(float(mean), 0.0))
            # d sqrt(x) / sqrt(x) = dx / 2x
            rms_err[k] = 0.5 * float(mean_err) / rms[k] if rms[k] > 0 else 0.0
    return ProjectedMoments(sigma, rms[0], rms[1], sigma_err, rms_err[0], rms_err[1])


def compute_projection(
    model: GalaxyModel,
    selection: Callable[[Array], Sequence[float]],
    x_bounds: Tuple[float, float],
    y_bounds: Tuple[float, float],
    rotation=None,
    num_values: Optional[int] = None,
    rel_tol: float = DEFAULT_REL_TOL,
    max_evals: int = DEFAULT_MAX_EVALS,
    diagnostics: Optional[Diagnostics] = None,
) -> Tuple[Array, Array]:
    """
    Integral of DF x selection over a rectangle of the sky and the full line of sight
    and velocity space.

    Parameters
    ----------
    selection : callable of the observed (X, Y, Z, vX, vY, vZ), returning
                ``num_values`` values
    x_bounds, y_bounds : limits of the observed X and Y
    rotation  : orthogonal matrix with ``observed = rotation @ intrinsic``
                (identity by default)

    Returns
    -------
    values, errors : arrays of length ``num_values``
    """
    rotation = np.eye(3) if rotation is None else np.asarray(rotation, dtype=float)
    if rotation.shape != (3, 3) or not np.allclose(rotation @ rotation.T, np.eye(3), atol=1e-10):
        raise ValueError("compute_projection: rotation must be an orthogonal 3x3 matrix")
    if not (x_bounds[0] < x_bounds[1] and y_bounds[0] < y_bounds[1]):
        raise ValueError("compute_projection: empty X or Y range")
    fnc = DFIntegrandProjection(model, selection, rotation, num_values, diagnostics)
    lower = np.array([x_bounds[0], y_bounds[0], 0, 0, 0, 0], dtype=float)
    upper = np.array([x_bounds[1], y_bounds[1], 1, 1, 1, 1], dtype=float)
    return integrate_ndim(fnc, lower, upper, rel_tol, max_evals)
