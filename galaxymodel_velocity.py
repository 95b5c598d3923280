"""
Velocity distributions of a galaxy model represented by B-splines.

At a point (or along the line of sight, ``projected=True``) the three marginal
distributions f(vR), f(vz), f(vphi) are written as sums of B-spline basis
functions, f(v) = sum_i A_i B_i(v). The amplitudes follow from the projections
C_j = int f(v) B_j(v) dv, collected by one cubature of ``DFIntegrandVelDist``,
through the linear system  M A = C  with the overlap matrix M of the basis.
"""
from __future__ import annotations
from typing import NamedTuple, Optional, Sequence, Tuple, Union

import logging
import math
import numpy as np

from bspline import BsplineBasis, solve_for_amplitudes
from constants import DEFAULT_MAX_EVALS, DEFAULT_REL_TOL
from coordinates import PosCyl
from galaxymodel_integrands import Diagnostics, DFIntegrandVelDist, GalaxyModel
from math_core import integrate_ndim

Array = np.ndarray

log = logging.getLogger(__name__)

AXES = ("vR", "vz", "vphi")


class VelocityDistribution(NamedTuple):
    """Normalized marginal velocity distributions at one point.

    ``amplitudes[k]`` are the coefficients of ``bases[k]`` for the axis ``AXES[k]``;
    each reconstructed distribution integrates to (approximately) one.
    """
    density: float
    amplitudes: Tuple[Array, Array, Array]
    bases: Tuple[BsplineBasis, BsplineBasis, BsplineBasis]

    def evaluate(self, axis: Union[int, str], v) -> Array:
        """Value of the distribution of one velocity component at v (zero outside its grid)."""
        k = AXES.index(axis) if isinstance(axis, str) else int(axis)
        values = self.bases[k].interpolator(self.amplitudes[k])(np.asarray(v, dtype=float))
        return np.nan_to_num(values, nan=0.0)


def compute_velocity_distribution(
    model: GalaxyModel,
    point,
    grid_vR: Sequence[float],
    grid_vz: Sequence[float],
    grid_vphi: Sequence[float],
    order: int = 3,
    projected: bool = False,
    rel_tol: float = DEFAULT_REL_TOL,
    max_evals: int = DEFAULT_MAX_EVALS,
    diagnostics: Optional[Diagnostics] = None,
) -> VelocityDistribution:
    """
    B-spline representation of the velocity distribution at a point.

    Parameters
    ----------
    model : galaxy model
    point : (R, z[, phi]); with ``projected=True`` z is ignored and the
            distribution is integrated along the line of sight
    grid_vR, grid_vz, grid_vphi : nodes of the three B-spline bases
    order : degree of the B-splines (0 = histogram)

    Returns
    -------
    VelocityDistribution; its density is the local density (or the surface
    density when projected)
    """
    point = PosCyl(*point[:3])
    bases = tuple(BsplineBasis(grid, order) for grid in (grid_vR, grid_vz, grid_vphi))
    fnc = DFIntegrandVelDist(model, point, projected, *bases, diagnostics=diagnostics)

    # --- Step 1: integrals of f times each basis function over half of the (vR, vz) plane ---
    lower = np.zeros(4)
    upper = np.array([1.0, 1.0, 1.0, 0.5])
    if not projected:
        lower, upper = lower[1:], upper[1:]
    result, _ = integrate_ndim(fnc, lower, upper, rel_tol, max_evals)

    # --- Step 2: amplitudes from the overlap matrices ---
    phi0 = model.potential.value(point.R, 0.0 if projected else point.z)
    vesc = math.sqrt(-2 * phi0) if phi0 < 0 else 0.0
    amplitudes = []
    offset = 1
    for basis in bases:
        rhs = result[offset:offset + basis.num_values]
        amplitudes.append(solve_for_amplitudes(basis, rhs, vesc))
        offset += basis.num_values

    # --- Step 3: normalization ---
    density = float(result[0])
    if density > 0:
        amplitudes = [a / density for a in amplitudes]
    else:
        log.warning("compute_velocity_distribution: zero density at R=%g, z=%g", point.R, point.z)
        amplitudes = [np.zeros_like(a) for a in amplitudes]
    # only half of the velocity space was integrated
    return VelocityDistribution(2 * density, tuple(amplitudes), bases)


if __name__ == "__main__":
    import matplotlib.pyplot as plt

    from actions_staeckel import ActionFinderAxisymStaeckel
    from distribution_function import DoublePowerLawDF
    from potential_staeckel import OblatePerfectEllipsoid

    logging.basicConfig(level=logging.INFO)

    pot = OblatePerfectEllipsoid(mass=1.0, axis_a=1.0, axis_c=0.6)
    df = DoublePowerLawDF(norm=1.0, J0=0.3, slope_in=1.0, slope_out=5.0,
                          coef_h=(1.0, 1.0, 0.8), coef_g=(1.0, 1.0, 0.8))
    model = GalaxyModel(pot, ActionFinderAxisymStaeckel(pot), df)

    R, z = 1.0, 0.2
    vesc = math.sqrt(-2 * pot.value(R, z))
    grid = np.linspace(-vesc, vesc, 13)
    vdf = compute_velocity_distribution(model, (R, z), grid, grid, grid, order=3,
                                        rel_tol=1e-2, max_evals=20000)

    v = np.linspace(-vesc, vesc, 300)
    fig, ax = plt.subplots(figsize=(7, 5))
    for axis in AXES:
        ax.plot(v, vdf.evaluate(axis, v), label=axis)
    ax.set_xlabel('v'); ax.set_ylabel('f(v)')
    ax.set_title('Velocity distributions at R=%g, z=%g (density %.3g)' % (R, z, vdf.density))
    ax.legend()
    plt.tight_layout()
    plt.show()
