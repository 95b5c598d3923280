from __future__ import annotations

import math
import numpy as np

from coordinates import ProlSph
from potential_base import AxisymmetricPotential


class OblatePerfectEllipsoid(AxisymmetricPotential):
    """
    Potential of the oblate perfect ellipsoid (de Zeeuw 1985), a Staeckel potential.

    The density is ρ ∝ (1 + m²)^-2 with m² = R²/a² + z²/c², a > c. In the prolate
    spheroidal coordinates with alpha = -a², gamma = -c² the potential separates as

        Φ(λ,ν) = -[ (λ+γ) G(λ) - (ν+γ) G(ν) ] / (λ - ν),
        G(τ)   = (2GM/π) arctan( sqrt(τ+γ)/c ) / sqrt(τ+γ).

    Parameters
    ----------
    mass   : total mass M
    axis_a : major (equatorial) axis a
    axis_c : minor (vertical) axis c, 0 < c < a
    G      : gravitational constant
    """

    def __init__(self, mass: float = 1.0, axis_a: float = 1.0, axis_c: float = 0.5, G: float = 1.0):
        self.mass = float(mass)
        self.axis_a = float(axis_a)
        self.axis_c = float(axis_c)
        self.G = float(G)
        if not self.mass > 0:
            raise ValueError("OblatePerfectEllipsoid: mass must be positive")
        if not 0 < self.axis_c < self.axis_a:
            raise ValueError("OblatePerfectEllipsoid: axes must satisfy 0 < c < a")
        self.coordsys = ProlSph(alpha=-self.axis_a**2, gamma=-self.axis_c**2)

    def _phi(self, R, z, xp):
        c = self.axis_c
        b2 = self.coordsys.delta2
        D = xp.sqrt((R*R - z*z + b2)**2 + 4.0 * R*R * z*z)      # λ - ν
        p = xp.sqrt(0.5 * (R*R + z*z + b2 + D))                # sqrt(λ+γ)
        q = z * xp.sqrt(b2) / p                                # ±sqrt(ν+γ); q·arctan(q/c) is even
        return -(2 * self.G * self.mass / np.pi) * (p * xp.arctan(p / c) - q * xp.arctan(q / c)) / D

    def shape_function(self, x: float) -> float:
        """G at the shifted argument x = τ+γ >= 0."""
        c = self.axis_c
        norm = 2 * self.G * self.mass / math.pi
        if x < 1e-8 * c * c:
            return norm / c * (1.0 - x / (3.0 * c * c))
        s = math.sqrt(x)
        return norm * math.atan(s / c) / s

    def density(self, R, z):
        m2 = np.asarray(R, float)**2 / self.axis_a**2 + np.asarray(z, float)**2 / self.axis_c**2
        rho0 = self.mass / (np.pi**2 * self.axis_a**2 * self.axis_c)
        return rho0 / (1.0 + m2)**2
