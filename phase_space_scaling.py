"""
Mapping between the unit hypercube and physical position/velocity.

Position (3 scaled values):
    r = r_s tan(π s0 / 2),  cosθ = 2 s1 - 1,  φ = 2π s2,  jac = 4π r² dr/ds0.
Velocity (3 scaled values), inside the local escape-velocity ball:
    η   = (1/ζ - 1)^(1/p) + 1,   χ = s0 η - 1,
    |v| = v_esc ζ (1 + sign(χ) |χ|^p),
    θ   = π s1^k  (angle from the azimuthal direction),   φ = 2π s2,
    (vR, vz, vphi) = |v| (sinθ cosφ, sinθ sinφ, cosθ).
The speed warp puts the middle of the s0 range at the circular speed ζ v_esc,
where ζ = v_circ/v_esc clamped to [ζmin, ζmax]; p and k are the warp exponents.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Tuple

import math
import numpy as np

from constants import RADIUS_LIMIT
from coordinates import PosVelCyl
from errors import UndeterminedEscapeVelocity

Array = np.ndarray
Velocity = Tuple[float, float, float]


@dataclass(frozen=True)
class VelocityScaling:
    """Warp constants of the velocity scaling.

    Parameters
    ----------
    zeta_min, zeta_max : clamp range of ζ = v_circ / v_esc
    speed_power : p, exponent of the signed speed warp
    theta_power : k, exponent of the polar-angle warp θ = π s^k
    """
    zeta_min: float = 0.1
    zeta_max: float = 0.9
    speed_power: float = 2.0
    theta_power: float = 2.0

    def __post_init__(self):
        if not 0 < self.zeta_min <= self.zeta_max < 1:
            raise ValueError("VelocityScaling: need 0 < zeta_min <= zeta_max < 1")
        if not self.speed_power > 0 or not self.theta_power > 0:
            raise ValueError("VelocityScaling: warp exponents must be positive")


# -------------------- escape velocity --------------------

def escape_velocity(potential, R: float, z: float,
                    scaling: VelocityScaling = VelocityScaling()) -> Tuple[float, float]:
    """(v_esc, ζ) at (R, z); at infinity v_esc = 0 and ζ = 0.5."""
    if math.isinf(R * R + z * z):
        return 0.0, 0.5
    d = potential.evaluate(R, z)
    vesc = math.sqrt(-2.0 * d.value) if d.value <= 0 else math.nan
    if not math.isfinite(vesc):
        raise UndeterminedEscapeVelocity(R, z, d.value)
    if vesc == 0:
        return 0.0, 0.5
    zeta = math.sqrt(max(d.dR * R, 0.0)) / vesc
    return vesc, min(max(zeta, scaling.zeta_min), scaling.zeta_max)


# -------------------- velocity --------------------

def unscale_velocity(vars, vesc: float, zeta: float,
                     scaling: VelocityScaling = VelocityScaling()) -> Tuple[Velocity, float]:
    """Three scaled values -> (vR, vz, vphi) and the Jacobian d³v/d³s."""
    p, k = scaling.speed_power, scaling.theta_power
    eta = (1 / zeta - 1)**(1 / p) + 1
    chi = vars[0] * eta - 1
    vel = vesc * zeta * (1 + math.copysign(abs(chi)**p, chi))
    theta = math.pi * vars[1]**k
    phi = 2 * math.pi * vars[2]
    sintheta, costheta = math.sin(theta), math.cos(theta)
    dvel = vesc * zeta * p * eta * (abs(chi)**(p - 1) if chi != 0 else float(p <= 1))
    dtheta = math.pi * k * vars[1]**(k - 1) if vars[1] > 0 else math.pi * float(k == 1)
    jac = vel * vel * sintheta * dvel * dtheta * 2 * math.pi
    return (vel * sintheta * math.cos(phi), vel * sintheta * math.sin(phi), vel * costheta), jac


def scale_velocity(vel: Velocity, vesc: float, zeta: float,
                   scaling: VelocityScaling = VelocityScaling()) -> Array:
    """Inverse of unscale_velocity."""
    p, k = scaling.speed_power, scaling.theta_power
    vR, vz, vphi = vel
    speed = math.sqrt(vR * vR + vz * vz + vphi * vphi)
    eta = (1 / zeta - 1)**(1 / p) + 1
    u = speed / (vesc * zeta) - 1
    chi = math.copysign(abs(u)**(1 / p), u)
    theta = math.acos(min(max(vphi / speed, -1.0), 1.0)) if speed > 0 else 0.0
    phi = math.atan2(vz, vR) / (2 * math.pi) % 1.0
    return np.array([(chi + 1) / eta, (theta / math.pi)**(1 / k), phi])


# -------------------- position --------------------

def unscale_coords(vars, radial_scale: float = 1.0) -> Tuple[Tuple[float, float, float], float]:
    """Three scaled values -> (R, z, phi) and the Jacobian d³x/d³s."""
    s = vars[0]
    r = radial_scale * math.tan(0.5 * math.pi * s) if s < 1 else math.inf
    costheta = 2 * vars[1] - 1
    sintheta = math.sqrt(max(1 - costheta * costheta, 0.0))
    phi = 2 * math.pi * vars[2]
    if not 1 / RADIUS_LIMIT < r < RADIUS_LIMIT:
        jac = 0.0
    else:
        drds = 0.5 * math.pi * radial_scale / math.cos(0.5 * math.pi * s)**2
        jac = 4 * math.pi * r * r * drds
    R = r * sintheta if sintheta > 0 else 0.0
    z = r * costheta if costheta != 0 else 0.0
    return (R, z, phi), jac


def scale_coords(R: float, z: float, phi: float, radial_scale: float = 1.0) -> Array:
    r = math.hypot(R, z)
    costheta = z / r if r > 0 else 0.0
    return np.array([2 / math.pi * math.atan(r / radial_scale),
                     0.5 * (costheta + 1), phi / (2 * math.pi) % 1.0])


def unscale_infinite(s: float, scale: float = 1.0) -> Tuple[float, float]:
    """(0,1) -> (-∞,∞): x = scale tan(π(s - 1/2)); returns (x, dx/ds)."""
    if not 0 < s < 1:
        return math.copysign(math.inf, s - 0.5), 0.0
    arg = math.pi * (s - 0.5)
    return scale * math.tan(arg), scale * math.pi / math.cos(arg)**2


def scale_infinite(x: float, scale: float = 1.0) -> float:
    return math.atan(x / scale) / math.pi + 0.5


def unscale_two_sided_exp(s: float) -> Tuple[float, float]:
    """(0,1) -> (-∞,∞) with exponential tails; returns (x, dx/ds).

    With W = 2s-1:  x = -exp(1/(1+W) + 1/W) for W < 0,  x = exp(1/(1-W) - 1/W) for W > 0.
    """
    W = 2 * s - 1
    if W == 0:
        return 0.0, 0.0
    if W <= -1 or W >= 1:
        return math.copysign(math.inf, W), 0.0
    if W < 0:
        arg = 1 / (1 + W) + 1 / W
        x = -math.exp(arg) if arg < 700 else -math.inf
        jac = -x * (1 / (1 + W)**2 + 1 / W**2) * 2
    else:
        arg = 1 / (1 - W) - 1 / W
        x = math.exp(arg) if arg < 700 else math.inf
        jac = x * (1 / (1 - W)**2 + 1 / W**2) * 2
    if not math.isfinite(jac):
        jac = 0.0
    return x, jac


# -------------------- full phase space --------------------

@dataclass
class ScaledPhaseSpaceMap:
    """Six scaled values <-> position/velocity in cylindrical coordinates.

    Parameters
    ----------
    potential : provides the escape velocity at each position
    scaling   : velocity warp constants
    radial_scale : r_s of the radial tangent map
    """
    potential: object
    scaling: VelocityScaling = field(default_factory=VelocityScaling)
    radial_scale: float = 1.0

    def __post_init__(self):
        self.radial_scale = float(self.radial_scale)
        if not self.radial_scale > 0:
            raise ValueError("ScaledPhaseSpaceMap: radial_scale must be positive")

    def escape_velocity(self, R: float, z: float) -> Tuple[float, float]:
        return escape_velocity(self.potential, R, z, self.scaling)

    def unscale(self, vars) -> Tuple[PosVelCyl, float]:
        """Return the point and the Jacobian (spatial part times velocity part)."""
        (R, z, phi), jac_pos = unscale_coords(vars[:3], self.radial_scale)
        vesc, zeta = self.escape_velocity(R, z)
        (vR, vz, vphi), jac_vel = unscale_velocity(vars[3:6], vesc, zeta, self.scaling)
        return PosVelCyl(R, z, phi, vR, vz, vphi), jac_pos * jac_vel

    def scale(self, point: PosVelCyl) -> Array:
        vesc, zeta = self.escape_velocity(point.R, point.z)
        return np.concatenate([
            scale_coords(point.R, point.z, point.phi, self.radial_scale),
            scale_velocity((point.vR, point.vz, point.vphi), vesc, zeta, self.scaling)])
