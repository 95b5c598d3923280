"""
Actions, and the inverse mapping from action-angle variables to position/velocity,
in spherical potentials.

ActionFinderSpherical
    Jr = 1/π ∫ sqrt(2(E-Φ(r)) - L²/r²) dr between peri- and apocentre,
    Jz = L - |Lz|, Jphi = Lz.

SphericalTorus
    maps angles (θr, θz, θφ) on the torus of given actions to a phase-space point.
    The orbit lies in a plane of inclination cos i = Lz/L with the ascending node
    at θφ - sign(Lz) θz; inside the plane
      r(θr)  from  θr = Ωr ∫_{rp}^{r} dr'/vr,
      ψ      =  θz + ψ_swept(r) - (ΔΨ/π) θr,   ψ_swept = ∫_{rp}^{r} L/(r'² vr) dr',
    where ΔΨ is the angle swept from peri- to apocentre.
"""
from __future__ import annotations

import math
import numpy as np
from scipy.optimize import brentq, minimize_scalar

from actions_base import Actions, Angles
from constants import ACCURACY_ACTION
from coordinates import PosVelCyl, PosVelCar, posvel_car_to_cyl, to_pos_vel_cyl
from errors import InvalidOrbit
from math_core import integrate_1d, integrate_momentum, turning_point


class ActionFinderSpherical:
    """Exact actions in a spherical potential (``potential.is_spherical``, with ``value_r``)."""

    def __init__(self, potential, rel_tol: float = ACCURACY_ACTION):
        if not getattr(potential, "is_spherical", False):
            raise ValueError("ActionFinderSpherical: potential %s is not spherical"
                             % type(potential).__name__)
        self.potential = potential
        self.rel_tol = float(rel_tol)

    def momentum_sq(self, E: float, L: float):
        """p_r²(r) = 2(E - Φ(r)) - L²/r²."""
        phi = self.potential.value_r

        def p2(r):
            if r == 0:
                return 2 * (E - phi(0.0)) if L == 0 else -math.inf
            return 2 * (E - phi(r)) - (L / r)**2

        return p2

    def circular_radius(self, L: float) -> float:
        """Radius minimizing Φ(r) + L²/2r², searched in log r."""
        phi = self.potential.value_r

        def phi_eff(t):
            r = math.exp(t)
            return phi(r) + 0.5 * (L / r)**2

        res = minimize_scalar(phi_eff, bounds=(-30.0, 30.0), method="bounded",
                              options={"xatol": 1e-10})
        return math.exp(res.x)

    def turning_points(self, E: float, L: float, r_inside: float = None):
        """(rperi, rapo); equal radii for a circular orbit."""
        if r_inside is None:
            r_inside = self.circular_radius(L)
        p2 = self.momentum_sq(E, L)
        if not p2(r_inside) > 0:
            return r_inside, r_inside
        return turning_point(p2, r_inside, 0.0), turning_point(p2, r_inside, math.inf)

    def radial_action(self, E: float, L: float, r_inside: float = None) -> float:
        rp, ra = self.turning_points(E, L, r_inside)
        return integrate_momentum(self.momentum_sq(E, L), rp, ra, self.rel_tol) / math.pi

    def energy(self, Jr: float, L: float) -> float:
        """Energy of the orbit with the given radial action and total angular momentum."""
        r_c = self.circular_radius(L)
        E_c = self.potential.value_r(r_c) + 0.5 * (L / r_c)**2
        if Jr <= 0:
            return E_c

        def excess(E):
            return self.radial_action(E, L, r_c) - Jr

        E_hi = 0.5 * E_c
        for _ in range(200):
            if excess(E_hi) > 0:
                return brentq(excess, E_c, E_hi, xtol=1e-14 * abs(E_c))
            E_hi *= 0.5
        raise InvalidOrbit("No bound orbit with Jr=%g, L=%g" % (Jr, L))

    def actions(self, point: PosVelCyl) -> Actions:
        R, z, _, vR, vz, vphi = point
        E = self.potential.value(R, z) + 0.5 * (vR*vR + vz*vz + vphi*vphi)
        if not E < 0:
            raise InvalidOrbit("Spherical actions: E=%g >= 0 at R=%g, z=%g" % (E, R, z))
        Lz = R * vphi
        L = math.sqrt((z * vphi)**2 + (z * vR - R * vz)**2 + Lz * Lz)
        return Actions(self.radial_action(E, L), L - abs(Lz), Lz)


class SphericalTorus:
    """Angle -> position/velocity mapping on the torus with given actions.

    Parameters
    ----------
    potential : spherical potential
    actions   : (Jr, Jz, Jphi) of the torus
    """

    def __init__(self, potential, actions: Actions):
        self.finder = ActionFinderSpherical(potential)
        self.actions = Actions(*actions)
        Jr, Jz, Jphi = self.actions
        if Jr < 0 or Jz < 0:
            raise InvalidOrbit("SphericalTorus: negative actions %s" % (self.actions,))
        self.L = Jz + abs(Jphi)
        self.E = self.finder.energy(Jr, self.L)
        self.rperi, self.rapo = self.finder.turning_points(self.E, self.L)
        self._p2 = self.finder.momentum_sq(self.E, self.L)
        self.half_period = self._phase_integral(1.0, swept=False)
        self.half_swept = self._phase_integral(1.0, swept=True)

    def _radius(self, y: float) -> float:
        return self.rperi + (self.rapo - self.rperi) * y * y * (3 - 2 * y)

    def _phase_integral(self, y: float, swept: bool) -> float:
        """∫ dr/vr (or ∫ L dr/(r² vr)) from pericentre to r(y)."""
        dr = self.rapo - self.rperi
        if dr <= 0 or y <= 0:
            return 0.0

        def integrand(s):
            r = self._radius(s)
            p2 = self._p2(r)
            if not (p2 > 0 and math.isfinite(p2)):
                return 0.0
            val = dr * 6 * s * (1 - s) / math.sqrt(p2)
            return val * self.L / (r * r) if swept else val

        return integrate_1d(integrand, 0.0, y, 1e-8, "torus phase")

    @property
    def frequencies(self):
        """(Ωr, Ωψ/Ωr) of the orbit."""
        if self.half_period <= 0:
            return math.nan, math.nan
        return math.pi / self.half_period, self.half_swept / math.pi

    def map(self, angles: Angles) -> PosVelCyl:
        return to_pos_vel_cyl(self._map_car(angles))

    def _map_car(self, angles: Angles) -> PosVelCar:
        thetar, thetaz, thetaphi = (float(a) % (2 * math.pi) for a in angles)
        outgoing = thetar <= math.pi
        theta = thetar if outgoing else 2 * math.pi - thetar

        # --- radial phase: solve Ωr t(r) = θr on the half orbit ---
        if self.half_period > 0 and 0 < theta < math.pi:
            target = theta / math.pi * self.half_period
            y = brentq(lambda s: self._phase_integral(s, swept=False) - target, 0.0, 1.0, xtol=1e-12)
        else:
            y = 0.0 if theta < 0.5 * math.pi else 1.0
        r = self._radius(y)
        vr = math.sqrt(max(self._p2(r), 0.0)) if r > 0 else 0.0
        swept = self._phase_integral(y, swept=True)
        if not outgoing:
            vr, swept = -vr, 2 * self.half_swept - swept

        # --- orientation of the orbital plane ---
        Lz = self.actions.Jphi
        psi = thetaz + swept - self.half_swept / math.pi * thetar
        node = thetaphi - math.copysign(1.0, Lz) * thetaz
        cosi = Lz / self.L if self.L > 0 else 0.0
        sini = math.sqrt(max(1.0 - cosi * cosi, 0.0))
        cn, sn = math.cos(node), math.sin(node)
        cp, sp = math.cos(psi), math.sin(psi)
        rhat = (cn*cp - sn*sp*cosi, sn*cp + cn*sp*cosi, sp*sini)
        psihat = (-cn*sp - sn*cp*cosi, -sn*sp + cn*cp*cosi, cp*sini)
        vpsi = self.L / r if r > 0 else 0.0
        pos = [r * e for e in rhat]
        vel = [vr * e + vpsi * f for e, f in zip(rhat, psihat)]
        return PosVelCar(*pos, *vel)

    def sample(self, num_points: int, rng=None) -> np.ndarray:
        """Phase-space points at uniformly random angles, as an (N,6) array."""
        rng = np.random.default_rng(rng)
        angles = rng.random((int(num_points), 3)) * 2 * np.pi
        car = np.array([self._map_car(Angles(*a)) for a in angles]).reshape(-1, 6)
        return np.asarray(posvel_car_to_cyl(car))
