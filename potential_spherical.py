from __future__ import annotations

import math
import numpy as np

from potential_base import AxisymmetricPotential


class _SphericalPotential(AxisymmetricPotential):

    is_spherical = True

    def __init__(self, mass: float = 1.0, scale_radius: float = 1.0, G: float = 1.0):
        self.mass = float(mass)
        self.scale_radius = float(scale_radius)
        self.G = float(G)
        if not self.mass > 0 or not self.scale_radius > 0:
            raise ValueError("%s: mass and scale radius must be positive" % type(self).__name__)

    def value_r(self, r: float) -> float:
        """Φ at spherical radius r."""
        return self.value(r, 0.0)


class Isochrone(_SphericalPotential):
    """Hénon's isochrone, Φ(r) = -GM / (b + sqrt(b² + r²)).

    Its Hamiltonian is known in closed form in terms of the actions, which makes
    it the reference potential for the action finders and the torus mapper.
    """

    def _phi(self, R, z, xp):
        b = self.scale_radius
        return -self.G * self.mass / (b + xp.sqrt(b*b + R*R + z*z))

    def energy(self, Jr: float, L: float) -> float:
        """H(Jr, L) with L = Jz + |Jphi|."""
        GM = self.G * self.mass
        return -0.5 * (GM / (Jr + 0.5 * (L + math.sqrt(L*L + 4 * GM * self.scale_radius))))**2

    def radial_action(self, E: float, L: float) -> float:
        GM = self.G * self.mass
        return GM / math.sqrt(-2 * E) - 0.5 * (L + math.sqrt(L*L + 4 * GM * self.scale_radius))

    def density(self, R, z):
        b = self.scale_radius
        r2 = np.asarray(R, float)**2 + np.asarray(z, float)**2
        a = np.sqrt(b*b + r2)
        return self.mass * (3 * (b + a) * a*a - r2 * (b + 3*a)) / (4 * np.pi * (b + a)**3 * a**3)


class Plummer(_SphericalPotential):
    """Plummer sphere, Φ(r) = -GM / sqrt(r² + b²)."""

    def _phi(self, R, z, xp):
        b = self.scale_radius
        return -self.G * self.mass / xp.sqrt(b*b + R*R + z*z)

    def density(self, R, z):
        b = self.scale_radius
        r2 = np.asarray(R, float)**2 + np.asarray(z, float)**2
        return 3 * self.mass / (4 * np.pi * b**3) * (1 + r2 / (b*b))**-2.5
