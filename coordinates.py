from __future__ import annotations
from dataclasses import dataclass
from typing import NamedTuple, Tuple

import math
import numpy as np
import jax
import jax.numpy as jnp

jax.config.update("jax_enable_x64", True)

Array = np.ndarray


class PosCyl(NamedTuple):
    R: float
    z: float
    phi: float = 0.0


class PosVelCyl(NamedTuple):
    """Position and velocity in cylindrical coordinates (phi in radians)."""
    R: float
    z: float
    phi: float
    vR: float
    vz: float
    vphi: float


class PosVelCar(NamedTuple):
    x: float
    y: float
    z: float
    vx: float
    vy: float
    vz: float


# -------------------- single points (scalar math, used in hot loops) --------------------

def to_pos_vel_cyl(point: PosVelCar) -> PosVelCyl:
    x, y, z, vx, vy, vz = point
    R = math.hypot(x, y)
    if R == 0.0:
        # on the axis: phi=0, velocity components taken along x and y
        return PosVelCyl(0.0, z, 0.0, vx, vz, vy)
    cosphi, sinphi = x / R, y / R
    phi = math.atan2(y, x)
    if phi < 0.0:
        phi += 2 * math.pi
    return PosVelCyl(R, z, phi, vx * cosphi + vy * sinphi, vz, vy * cosphi - vx * sinphi)


def to_pos_vel_car(point: PosVelCyl) -> PosVelCar:
    R, z, phi, vR, vz, vphi = point
    cosphi, sinphi = math.cos(phi), math.sin(phi)
    return PosVelCar(R * cosphi, R * sinphi, z,
                     vR * cosphi - vphi * sinphi, vR * sinphi + vphi * cosphi, vz)


# -------------------- batched conversions (jax) --------------------

@jax.jit
def posvel_cyl_to_car(posvel):
    """(N,6) array of (R, z, phi, vR, vz, vphi) -> (N,6) array of (x, y, z, vx, vy, vz)."""
    R, z, phi, vR, vz, vphi = [posvel[:, i] for i in range(6)]
    c, s = jnp.cos(phi), jnp.sin(phi)
    return jnp.stack([R * c, R * s, z, vR * c - vphi * s, vR * s + vphi * c, vz], axis=1)


@jax.jit
def posvel_car_to_cyl(posvel):
    """(N,6) array of (x, y, z, vx, vy, vz) -> (N,6) array of (R, z, phi, vR, vz, vphi)."""
    x, y, z, vx, vy, vz = [posvel[:, i] for i in range(6)]
    R = jnp.sqrt(x*x + y*y)
    phi = jnp.arctan2(y, x)
    phi = jnp.where(phi < 0.0, phi + 2*jnp.pi, phi)
    phi = jnp.where(R == 0.0, 0.0, phi)  # define φ=0 on axis
    c, s = jnp.cos(phi), jnp.sin(phi)
    return jnp.stack([R, z, phi, vx * c + vy * s, vz, vy * c - vx * s], axis=1)


# -------------------- prolate spheroidal coordinates --------------------

@dataclass(frozen=True)
class ProlSph:
    """Prolate spheroidal coordinate system with foci at z = ±sqrt(gamma - alpha).

    The coordinates (lambda, nu) are the roots of

        R^2/(tau+alpha) + z^2/(tau+gamma) = 1,   -gamma <= nu <= -alpha <= lambda.

    All conversions work with the shifted values lambda+gamma and nu+gamma,
    which stay accurate near the equatorial plane and far from the foci.

    Parameters
    ----------
    alpha, gamma : coordinate-system parameters, alpha < gamma
    """
    alpha: float
    gamma: float

    def __post_init__(self):
        if not (math.isfinite(self.alpha) and math.isfinite(self.gamma)):
            raise ValueError("ProlSph: alpha and gamma must be finite")
        if not self.alpha < self.gamma:
            raise ValueError("ProlSph: alpha must be smaller than gamma")

    @property
    def delta2(self) -> float:
        """Squared focal distance gamma - alpha."""
        return self.gamma - self.alpha

    @classmethod
    def from_focal_distance(cls, delta: float, gamma: float = -1.0) -> "ProlSph":
        delta = float(delta)
        if not delta > 0:
            raise ValueError("ProlSph: focal distance must be positive")
        return cls(alpha=gamma - delta * delta, gamma=gamma)

    def shifted_from_cyl(self, R: float, z: float) -> Tuple[float, float]:
        """(R, z) -> (lambda+gamma, nu+gamma)."""
        b2 = self.delta2
        R2, z2 = R * R, z * z
        D = math.sqrt((R2 - z2 + b2)**2 + 4.0 * R2 * z2)   # lambda - nu
        lam_g = 0.5 * (R2 + z2 + b2 + D)
        nu_g = z2 * b2 / lam_g if lam_g > 0 else 0.0
        return lam_g, nu_g

    def from_cyl(self, R: float, z: float) -> Tuple[float, float]:
        lam_g, nu_g = self.shifted_from_cyl(R, z)
        return lam_g - self.gamma, nu_g - self.gamma

    def shifted_to_cyl(self, lam_g: float, nu_g: float) -> Tuple[float, float]:
        """(lambda+gamma, nu+gamma) -> (R, |z|)."""
        b2 = self.delta2
        R2 = (lam_g - b2) * (b2 - nu_g) / b2
        z2 = lam_g * nu_g / b2
        return math.sqrt(max(R2, 0.0)), math.sqrt(max(z2, 0.0))

    def to_cyl(self, lam: float, nu: float) -> Tuple[float, float]:
        return self.shifted_to_cyl(lam + self.gamma, nu + self.gamma)

    def velocities(self, point: PosVelCyl) -> Tuple[float, float]:
        """Time derivatives (dlambda/dt, dnu/dt) along the orbit through `point`."""
        b2 = self.delta2
        lam_g, nu_g = self.shifted_from_cyl(point.R, point.z)
        lam_minus_nu = lam_g - nu_g
        if lam_minus_nu == 0:
            raise ValueError("ProlSph: velocities undefined at the focal point")
        lamdot = 2.0 * (point.R * point.vR * lam_g + point.z * point.vz * (lam_g - b2)) / lam_minus_nu
        nudot = -2.0 * (point.R * point.vR * nu_g + point.z * point.vz * (nu_g - b2)) / lam_minus_nu
        return lamdot, nudot
