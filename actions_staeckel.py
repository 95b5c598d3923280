"""
Action finders based on the Staeckel separation in prolate spheroidal coordinates.

ActionFinderAxisymStaeckel
    exact actions for the oblate perfect ellipsoid, a Staeckel potential:
      Step 1: E, Lz and the prolate spheroidal coordinates (λ,ν) of the point.
      Step 2: the third integral I3 from the shape function G(λ).
      Step 3: the squared momentum p²(x) with x = τ+γ, identical for τ=λ and τ=ν:
                p²(x) = [E - Lz²/(2(x-Δ²)) - I3/x + G(x)] / (2(x-Δ²)),   Δ² = γ-α.
      Step 4: Jz = 2/π ∫ p dx between 0 and the upper root in (0, Δ²).
      Step 5: Jr = 1/π ∫ p dx between the roots bracketing λ+γ in (Δ², ∞).
      Step 6: Jphi = Lz.

ActionFinderAxisymFudge
    the Staeckel Fudge (Binney 2012) for an arbitrary axisymmetric potential: the
    potential is treated as if it were separable in a fixed coordinate system, and
    each of the λ- and ν-motions gets its own effective third integral.
"""
from __future__ import annotations
from typing import Callable, Optional

import logging
import math

from actions_base import Actions, IntegralsOfMotion
from constants import ACCURACY_ACTION, FUDGE_ALPHA, FUDGE_GAMMA
from coordinates import PosVelCyl, ProlSph
from errors import InvalidOrbit
from math_core import find_root, integrate_momentum, turning_point
from potential_base import AxisymmetricPotential

log = logging.getLogger(__name__)

MomentumSq = Callable[[float], float]


# -----------------------------------------------------------------------------
#                         SHARED PIECES OF BOTH FINDERS
# -----------------------------------------------------------------------------

def _velocity_terms(point: PosVelCyl, x: float, b2: float) -> float:
    """2(τ+α)(τ+γ) p_τ² at the point itself, for x = τ+γ (λ or ν branch).

    Equal to (R vR (τ+γ) + z vz (τ+α))² / (2 (τ+α)(τ+γ)).
    """
    num = point.R * point.vR * x + point.z * point.vz * (x - b2)
    if num == 0:
        return 0.0
    return num * num / (2 * (x - b2) * x)


def _vertical_action(p2: MomentumSq, nu_g: float, b2: float, rel_tol: float) -> float:
    """2/π ∫_0^xmax p dx, with xmax the root of p² in (0, Δ²)."""
    guess = min(max(nu_g, b2 * 1e-3), b2)
    if p2(guess) > 0:
        xmax = turning_point(p2, guess, b2)
    else:
        # the turning point lies below the guess: walk toward 0 until p² > 0
        xmax = 0.0
        hi = guess
        for k in range(1, 1100):
            x = guess * 0.5**k
            if x == 0:
                break
            fx = p2(x)
            if fx > 0 and math.isfinite(fx):
                xmax = find_root(p2, x, hi)
                break
            hi = x
    return 2 / math.pi * integrate_momentum(p2, 0.0, xmax, rel_tol)


def _radial_action(p2: MomentumSq, lam_g: float, b2: float, rel_tol: float) -> float:
    """1/π ∫ p dx between the roots of p² on both sides of λ+γ."""
    if p2(lam_g) > 0:
        xmin = turning_point(p2, lam_g, b2)
        xmax = turning_point(p2, lam_g, math.inf)
    else:
        # the point sits at a radial turning point; p² < 0 there is roundoff
        delta = 1e-8 * lam_g
        x_up = lam_g + delta
        x_dn = max(lam_g - delta, 0.5 * (lam_g + b2))
        if p2(x_up) > 0:
            xmin, xmax = lam_g, turning_point(p2, x_up, math.inf)
        elif p2(x_dn) > 0:
            xmin, xmax = turning_point(p2, x_dn, b2), lam_g
        else:
            return 0.0
    return integrate_momentum(p2, xmin, xmax, rel_tol) / math.pi


# -----------------------------------------------------------------------------
#                            STAECKEL (EXACT) FINDER
# -----------------------------------------------------------------------------

def integrals_of_motion(potential, point: PosVelCyl) -> IntegralsOfMotion:
    """E, Lz, I3 and the shifted (λ+γ, ν+γ) of a point in a Staeckel potential.

    ``potential`` must provide ``coordsys`` (ProlSph), ``shape_function`` and ``value``.
    """
    cs = potential.coordsys
    b2 = cs.delta2
    lam_g, nu_g = cs.shifted_from_cyl(point.R, point.z)
    E = potential.value(point.R, point.z) + 0.5 * (point.vR**2 + point.vz**2 + point.vphi**2)
    Lz = point.R * point.vphi
    if point.z == 0:
        # ν+γ = 0 and the general expression becomes 0/0
        I3 = 0.5 * point.vz**2 * (point.R**2 + b2)
    else:
        lam_a = lam_g - b2
        lz_term = Lz * Lz / (2 * lam_a) if Lz != 0 else 0.0
        I3 = lam_g * (E - lz_term + potential.shape_function(lam_g)) - _velocity_terms(point, lam_g, b2)
    return IntegralsOfMotion(E, Lz, max(I3, 0.0), lam_g, nu_g, cs)


def _staeckel_momentum(potential, iom: IntegralsOfMotion) -> MomentumSq:
    b2 = iom.coordsys.delta2
    E, Lz, I3 = iom.E, iom.Lz, iom.I3

    def p2(x):
        xa = x - b2
        if x == 0 or xa == 0:
            return math.nan
        return (E - Lz * Lz / (2 * xa) - I3 / x + potential.shape_function(x)) / (2 * xa)

    return p2


class ActionFinderAxisymStaeckel:
    """Actions in the oblate perfect ellipsoid.

    Parameters
    ----------
    potential : a Staeckel potential exposing ``coordsys`` and ``shape_function``
    rel_tol   : relative accuracy of the action integrals
    """

    def __init__(self, potential, rel_tol: float = ACCURACY_ACTION):
        if not (hasattr(potential, "coordsys") and hasattr(potential, "shape_function")):
            raise ValueError("ActionFinderAxisymStaeckel: potential %s is not of Staeckel type"
                             % type(potential).__name__)
        self.potential = potential
        self.rel_tol = float(rel_tol)

    def integrals(self, point: PosVelCyl) -> IntegralsOfMotion:
        return integrals_of_motion(self.potential, point)

    def actions(self, point: PosVelCyl) -> Actions:
        iom = self.integrals(point)
        if not iom.E < 0:
            raise InvalidOrbit("Staeckel actions: E=%g >= 0 at R=%g, z=%g" % (iom.E, point.R, point.z))
        p2 = _staeckel_momentum(self.potential, iom)
        b2 = iom.coordsys.delta2
        Jz = _vertical_action(p2, iom.nu_g, b2, self.rel_tol) if iom.I3 > 0 else 0.0
        Jr = _radial_action(p2, iom.lambda_g, b2, self.rel_tol)
        return Actions(Jr, Jz, iom.Lz)


# -----------------------------------------------------------------------------
#                                STAECKEL FUDGE
# -----------------------------------------------------------------------------

def estimate_focal_distance(potential: AxisymmetricPotential, R: float, z: float) -> float:
    """Focal distance of the Staeckel potential that best matches ``potential``
    near (R, z), from its second derivatives (Sanders 2012, eq. 9).

    Exact for Staeckel potentials. Returns 0 where the estimate of Δ² is negative.
    """
    d = potential.evaluate(R, z, hessian=True)
    hRR, hRz, hzz = d.hessian[0, 0], d.hessian[0, 1], d.hessian[1, 1]
    if hRz == 0:
        raise ValueError("estimate_focal_distance: mixed derivative vanishes at R=%g, z=%g" % (R, z))
    delta2 = z*z - R*R + (3*z*d.dR - 3*R*d.dz + R*z*(hRR - hzz)) / hRz
    return math.sqrt(max(delta2, 0.0))


class ActionFinderAxisymFudge:
    """Staeckel Fudge actions for any axisymmetric potential.

    Parameters
    ----------
    potential : any axisymmetric potential with ``value(R, z)``
    coordsys  : coordinate system of the fudge (default alpha=-2.56, gamma=-1);
                alternatively give ``focal_distance``
    rel_tol   : relative accuracy of the action integrals
    """

    def __init__(
        self,
        potential: AxisymmetricPotential,
        coordsys: Optional[ProlSph] = None,
        focal_distance: Optional[float] = None,
        rel_tol: float = ACCURACY_ACTION,
    ):
        if coordsys is not None and focal_distance is not None:
            raise ValueError("ActionFinderAxisymFudge: give either coordsys or focal_distance")
        if coordsys is None:
            coordsys = (ProlSph(FUDGE_ALPHA, FUDGE_GAMMA) if focal_distance is None
                        else ProlSph.from_focal_distance(focal_distance))
        self.potential = potential
        self.coordsys = coordsys
        self.rel_tol = float(rel_tol)

    def _phi(self, lam_g: float, nu_g: float) -> float:
        R, z = self.coordsys.shifted_to_cyl(lam_g, nu_g)
        return self.potential.value(R, z)

    def actions(self, point: PosVelCyl) -> Actions:
        pot = self.potential
        b2 = self.coordsys.delta2
        E = pot.value(point.R, point.z) + 0.5 * (point.vR**2 + point.vz**2 + point.vphi**2)
        if not E < 0:
            raise InvalidOrbit("Fudge actions: E=%g >= 0 at R=%g, z=%g" % (E, point.R, point.z))
        Lz = point.R * point.vphi
        lam_g, nu_g = self.coordsys.shifted_from_cyl(point.R, point.z)

        # χ_τ(τ) = -(τ - τ_other) Φ(τ, τ_other), with the other coordinate frozen
        def chi_lam(x):
            return -(x - nu_g) * self._phi(x, nu_g)

        def chi_nu(x):
            return (lam_g - x) * self._phi(lam_g, x)

        def lz_term(x):
            xa = x - b2
            return Lz * Lz / (2 * xa) if Lz != 0 else 0.0

        P_lam = _velocity_terms(point, lam_g, b2)
        P_nu = -0.5 * point.vz**2 * lam_g if point.z == 0 else _velocity_terms(point, nu_g, b2)
        K_lam = lam_g * (E - lz_term(lam_g)) + chi_lam(lam_g) - P_lam
        K_nu = nu_g * (E - lz_term(nu_g)) + chi_nu(nu_g) - P_nu

        def momentum(K, chi):
            def p2(x):
                xa = x - b2
                if x == 0 or xa == 0:
                    return math.nan
                return (x * (E - Lz * Lz / (2 * xa)) - K + chi(x)) / (2 * xa * x)
            return p2

        I3_nu = K_nu - chi_nu(0.0)
        Jz = _vertical_action(momentum(K_nu, chi_nu), nu_g, b2, self.rel_tol) if I3_nu > 0 else 0.0
        Jr = _radial_action(momentum(K_lam, chi_lam), lam_g, b2, self.rel_tol)
        return Actions(Jr, Jz, Lz)
