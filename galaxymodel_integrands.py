"""
Integrands of an action-based distribution function over parts of phase space.

Every integrand maps a point of the unit hypercube (the scaled variables) to a
position/velocity and runs the same pipeline there:

    Step 1: unscale the variables; a zero Jacobian marks an inadmissible point
            (beyond the escape velocity, at infinity) and gives a zero DF.
    Step 2: actions from the model's action finder.
    Step 3: DF value(s) times the Jacobian.
    Step 4: the variant's output values.

Failures in steps 2-3 at single points are turned into a zero contribution and
reported to a diagnostics sink; they never abort a cubature or sampling run.
Integrands are called with an (npoints, num_vars) array and return an
(npoints, num_values) array, the convention of ``math_core.integrate_ndim``.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import IntFlag
from typing import Callable, NamedTuple, Optional, Sequence, Tuple

import logging
import math
import numpy as np
from scipy.special import erfinv

from actions_base import ActionFinder
from bspline import BsplineBasis
from coordinates import PosCyl, PosVelCyl, to_pos_vel_car
from distribution_function import DistributionFunction
from phase_space_scaling import (ScaledPhaseSpaceMap, VelocityScaling, escape_velocity,
                                 unscale_infinite, unscale_two_sided_exp, unscale_velocity)
from potential_base import AxisymmetricPotential

Array = np.ndarray

log = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
#                               MODEL / DIAGNOSTICS
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class GalaxyModel:
    """
    Potential, action finder and DF of one stellar system.

    Parameters
    ----------
    potential     : axisymmetric potential
    action_finder : anything with ``actions(point) -> Actions``
    df            : distribution function of the actions
    discard_zero_actions : if True, points where both Jr and Jz come out exactly
        zero contribute nothing (such values usually signal a failure of the
        action finder near a coordinate singularity, but also occur on exactly
        circular orbits)
    velocity_scaling : warp constants of the scaled velocity variables
    """
    potential: AxisymmetricPotential
    action_finder: ActionFinder
    df: DistributionFunction
    discard_zero_actions: bool = True
    velocity_scaling: VelocityScaling = field(default_factory=VelocityScaling)

    @property
    def num_components(self) -> int:
        return int(getattr(self.df, "num_components", 1))


class RecoveredEvaluation(NamedTuple):
    """One evaluation whose DF value was replaced by zero."""
    vars: Tuple[float, ...]
    posvel: Optional[PosVelCyl]
    message: str


Diagnostics = Callable[[RecoveredEvaluation], None]


def log_recovered(record: RecoveredEvaluation) -> None:
    """Default diagnostics sink: the module logger at DEBUG level."""
    log.debug("DF set to zero (%s) at %s, scaled vars %s",
              record.message, record.posvel, record.vars)


# -----------------------------------------------------------------------------
#                                 BASE INTEGRAND
# -----------------------------------------------------------------------------

class DFIntegrand:
    """Common pipeline; variants implement ``unscale_vars`` and ``output_values``.

    ``per_component`` selects whether ``output_values`` receives the DF value of
    every component or only their sum (an array of length 1).
    """

    num_vars = 0
    num_values = 1
    per_component = False

    def __init__(self, model: GalaxyModel, diagnostics: Optional[Diagnostics] = None):
        self.model = model
        self.diagnostics = log_recovered if diagnostics is None else diagnostics

    def unscale_vars(self, vars) -> Tuple[PosVelCyl, float]:
        """Scaled variables -> (position/velocity, Jacobian)."""
        raise NotImplementedError

    def output_values(self, point: PosVelCyl, dfval: Array) -> Array:
        raise NotImplementedError

    @property
    def _df_size(self) -> int:
        return self.model.num_components if self.per_component else 1

    def _recover(self, vars, point, message: str) -> Array:
        self.diagnostics(RecoveredEvaluation(tuple(float(v) for v in vars), point, message))
        return np.zeros(self._df_size)

    def df_value(self, vars, point: PosVelCyl, jac: float) -> Array:
        """DF value(s) at the point times the Jacobian; zeros where they cannot be computed."""
        if jac == 0:
            return np.zeros(self._df_size)
        model = self.model
        try:
            act = model.action_finder.actions(point)
            if not math.isfinite(act[0] + act[1] + act[2]):
                return self._recover(vars, point, "actions are not finite: %s" % (act,))
            if model.discard_zero_actions and act[0] == 0 and act[1] == 0:
                return self._recover(vars, point, "radial and vertical actions are both zero")
            values = np.asarray(model.df.eval(act), dtype=float)
            if not self.per_component:
                values = np.array([values.sum()])
            values = values * jac
        except Exception as exc:
            return self._recover(vars, point, "%s: %s" % (type(exc).__name__, exc))
        if not np.all(np.isfinite(values)):
            return self._recover(vars, point, "DF is not finite")
        return values

    def eval(self, vars) -> Array:
        """Output values at a single point of the scaled variables."""
        vars = np.asarray(vars, dtype=float)
        point, jac = self.unscale_vars(vars)
        return self.output_values(point, self.df_value(vars, point, jac))

    def __call__(self, x) -> Array:
        x = np.atleast_2d(np.asarray(x, dtype=float))
        out = np.empty((x.shape[0], self.num_values))
        for i, row in enumerate(x):
            out[i] = self.eval(row)
        return out


# -----------------------------------------------------------------------------
#                                   VARIANTS
# -----------------------------------------------------------------------------

class MomentMode(IntFlag):
    """Velocity moments accumulated besides the density (combine with |)."""
    DENSITY = 0
    FIRST = 1      # <vphi>; the other first moments vanish by symmetry
    SECOND = 2     # vR², vz², vphi², vR vz, vR vphi, vz vphi


SECOND_MOMENT_NAMES = ("vR2", "vz2", "vphi2", "vRvz", "vRvphi", "vzvphi")


class DFIntegrandAtPoint(DFIntegrand):
    """DF and its velocity moments at a fixed position; integrates over velocity.

    Output layout: ``values[ic + ncomp * im]`` for DF component ``ic`` and moment
    ``im`` (0 is the density, then <vphi> if requested, then the six second moments).
    """

    num_vars = 3
    per_component = True

    def __init__(self, model: GalaxyModel, point, mode: MomentMode = MomentMode.FIRST | MomentMode.SECOND,
                 diagnostics: Optional[Diagnostics] = None):
        super().__init__(model, diagnostics)
        self.point = PosCyl(*point[:3])
        self.mode = MomentMode(mode)
        self.vesc, self.zeta = escape_velocity(model.potential, self.point.R, self.point.z,
                                               model.velocity_scaling)
        self.num_moments = (1 + (1 if self.mode & MomentMode.FIRST else 0)
                            + (6 if self.mode & MomentMode.SECOND else 0))
        self.num_values = model.num_components * self.num_moments

    def unscale_vars(self, vars):
        vel, jac = unscale_velocity(vars, self.vesc, self.zeta, self.model.velocity_scaling)
        return PosVelCyl(*self.point, *vel), jac

    def output_values(self, point, dfval):
        vR, vz, vphi = point.vR, point.vz, point.vphi
        moments = [1.0]
        if self.mode & MomentMode.FIRST:
            moments.append(vphi)
        if self.mode & MomentMode.SECOND:
            moments += [vR * vR, vz * vz, vphi * vphi, vR * vz, vR * vphi, vz * vphi]
        return np.outer(moments, dfval).ravel()


class DFIntegrandSixDim(DFIntegrand):
    """DF over the whole phase space (3 scaled positions + 3 scaled velocities)."""

    num_vars = 6

    def __init__(self, model: GalaxyModel, radial_scale: float = 1.0,
                 diagnostics: Optional[Diagnostics] = None):
        super().__init__(model, diagnostics)
        self.phase_map = ScaledPhaseSpaceMap(model.potential, model.velocity_scaling, radial_scale)

    def unscale_vars(self, vars):
        return self.phase_map.unscale(vars)

    def output_values(self, point, dfval):
        return dfval


class DFIntegrandProjected(DFIntegrand):
    """
    DF at a sky position R and line-of-sight velocity vz, integrated over z and
    the two transverse velocities.

    Scaled variables: z (tangent map), the fraction of the largest transverse speed
    sqrt(-2Φ - vz²), its direction, and, when ``vz_error`` > 0, the quantile of the
    Gaussian velocity error.
    """

    def __init__(self, model: GalaxyModel, R: float, vz: float, vz_error: float = 0.0,
                 diagnostics: Optional[Diagnostics] = None):
        super().__init__(model, diagnostics)
        self.R = float(R)
        self.vz = float(vz)
        self.vz_error = float(vz_error)
        if self.vz_error < 0:
            raise ValueError("DFIntegrandProjected: velocity error must be non-negative")
        self.num_vars = 3 if self.vz_error == 0 else 4

    def turning_condition(self, s: float) -> float:
        """Largest transverse speed squared at scaled height s (negative where unbound)."""
        vz2 = self.vz * self.vz
        if not 0 < s < 1:
            return -vz2
        z, _ = unscale_infinite(s)
        return -vz2 - 2 * self.model.potential.value(self.R, z)

    def unscale_vars(self, vars):
        vz = self.vz
        if self.vz_error != 0:
            vz += math.sqrt(2) * self.vz_error * float(erfinv(2 * vars[3] - 1))
        if not 0 < vars[0] < 1 or not math.isfinite(vz):
            return PosVelCyl(self.R, 0.0, 0.0, 0.0, self.vz, 0.0), 0.0
        z, jac = unscale_infinite(vars[0])
        v2 = -2 * self.model.potential.value(self.R, z) - vz * vz
        if not v2 > 0:
            return PosVelCyl(self.R, 0.0, 0.0, 0.0, vz, 0.0), 0.0
        v = math.sqrt(v2) * vars[1]
        phi = 2 * math.pi * vars[2]
        return (PosVelCyl(self.R, z, 0.0, v * math.cos(phi), vz, v * math.sin(phi)),
                jac * 2 * math.pi * v2 * vars[1])

    def output_values(self, point, dfval):
        return dfval


class DFIntegrandProjectedMoments(DFIntegrand):
    """Surface density, <z²> and <vz²> at a sky position R: outputs f, f z², f vz²."""

    num_vars = 4
    num_values = 3

    def __init__(self, model: GalaxyModel, R: float, diagnostics: Optional[Diagnostics] = None):
        super().__init__(model, diagnostics)
        self.R = float(R)

    def unscale_vars(self, vars):
        if not 0 < vars[0] < 1:
            return PosVelCyl(self.R, 0.0, 0.0, 0.0, 0.0, 0.0), 0.0
        z, jac = unscale_infinite(vars[0])
        vesc, zeta = escape_velocity(self.model.potential, self.R, z, self.model.velocity_scaling)
        vel, jac_vel = unscale_velocity(vars[1:4], vesc, zeta, self.model.velocity_scaling)
        return PosVelCyl(self.R, z, 0.0, *vel), (0.0 if vesc == 0 else jac * jac_vel)

    def output_values(self, point, dfval):
        f = dfval[0]
        return np.array([f, f * point.z**2, f * point.vz**2])


class DFIntegrandProjection(DFIntegrand):
    """
    DF weighted by a selection function in an observed (rotated) frame.

    Scaled variables: X, Y in the observed frame (integrated between the caller's
    bounds, not scaled), the line-of-sight coordinate Z through a two-sided
    exponential warp, and the three scaled velocities. Observed and intrinsic
    frames are related by ``obs = rotation @ intrinsic``.

    Parameters
    ----------
    selection : callable taking the observed (X, Y, Z, vX, vY, vZ) and returning
                ``num_values`` values
    rotation  : 3x3 orthogonal matrix
    """

    num_vars = 6

    def __init__(self, model: GalaxyModel, selection: Callable[[Array], Sequence[float]],
                 rotation, num_values: Optional[int] = None,
                 diagnostics: Optional[Diagnostics] = None):
        super().__init__(model, diagnostics)
        self.selection = selection
        self.rotation = np.asarray(rotation, dtype=float)
        if self.rotation.shape != (3, 3):
            raise ValueError("DFIntegrandProjection: rotation must be a 3x3 matrix")
        if num_values is None:
            num_values = getattr(selection, "num_values", 1)
        self.num_values = int(num_values)

    def unscale_vars(self, vars):
        Z, jac = unscale_two_sided_exp(vars[2])
        if jac == 0:
            return PosVelCyl(0.0, 0.0, 0.0, 0.0, 0.0, 0.0), 0.0
        x, y, z = self.rotation.T @ np.array([vars[0], vars[1], Z])
        R = math.hypot(x, y)
        phi = math.atan2(y, x) % (2 * math.pi)
        vesc, zeta = escape_velocity(self.model.potential, R, z, self.model.velocity_scaling)
        vel, jac_vel = unscale_velocity(vars[3:6], vesc, zeta, self.model.velocity_scaling)
        jac = jac * jac_vel if math.isfinite(jac_vel) else 0.0
        return PosVelCyl(R, float(z), phi, *vel), jac

    def output_values(self, point, dfval):
        car = to_pos_vel_car(point)
        observed = np.concatenate([self.rotation @ np.array(car[:3]),
                                   self.rotation @ np.array(car[3:])])
        values = np.asarray(self.selection(observed), dtype=float).reshape(self.num_values)
        return values * dfval[0]

    def eval(self, vars):
        vars = np.asarray(vars, dtype=float)
        point = None
        try:
            point, jac = self.unscale_vars(vars)
            if jac == 0:
                return np.zeros(self.num_values)
            return self.output_values(point, self.df_value(vars, point, jac))
        except Exception as exc:
            self._recover(vars, point, "%s: %s" % (type(exc).__name__, exc))
            return np.zeros(self.num_values)


class DFIntegrandVelDist(DFIntegrand):
    """
    DF-weighted values of three 1d B-spline bases in vR, vz and vphi.

    Only half of the (vR, vz) plane is scanned (the azimuth of the scaled velocity
    ends at 1/2): the actions do not change under (vR, vz) -> (-vR, -vz), so each
    point contributes half of its weight at both signs. Output layout:
    [f, f B^R_i (NR values), f B^z_i (Nz values), f B^phi_i (Nphi values)].

    With ``projected=True`` the height z is integrated over as well (first scaled
    variable), and ``point`` supplies only R and phi. The bases are borrowed.
    """

    per_component = False

    def __init__(self, model: GalaxyModel, point, projected: bool,
                 basis_vR: BsplineBasis, basis_vz: BsplineBasis, basis_vphi: BsplineBasis,
                 diagnostics: Optional[Diagnostics] = None):
        super().__init__(model, diagnostics)
        self.point = PosCyl(*point[:3])
        self.projected = bool(projected)
        self.bases = (basis_vR, basis_vz, basis_vphi)
        self.num_vars = 4 if self.projected else 3
        self.num_values = 1 + sum(b.num_values for b in self.bases)
        if not self.projected:
            self.vesc, self.zeta = escape_velocity(model.potential, self.point.R, self.point.z,
                                                   model.velocity_scaling)

    def unscale_vars(self, vars):
        R, z, phi = self.point
        scaling = self.model.velocity_scaling
        if not self.projected:
            vel, jac = unscale_velocity(vars, self.vesc, self.zeta, scaling)
            return PosVelCyl(R, z, phi, *vel), jac
        if not 0 < vars[0] < 1:
            return PosVelCyl(R, 0.0, phi, 0.0, 0.0, 0.0), 0.0
        z, jac = unscale_infinite(vars[0])
        vesc, zeta = escape_velocity(self.model.potential, R, z, scaling)
        vel, jac_vel = unscale_velocity(vars[1:4], vesc, zeta, scaling)
        return PosVelCyl(R, z, phi, *vel), (0.0 if vesc == 0 else jac * jac_vel)

    def output_values(self, point, dfval):
        f = dfval[0]
        out = np.zeros(self.num_values)
        out[0] = f
        if f == 0:
            return out
        basis_vR, basis_vz, basis_vphi = self.bases
        offset_z = 1 + basis_vR.num_values
        offset_phi = offset_z + basis_vz.num_values
        for offset, basis, v in ((1, basis_vR, point.vR), (offset_z, basis_vz, point.vz)):
            for sign in (1.0, -1.0):
                first, vals = basis.nonzero_components(sign * v)
                out[offset + first:offset + first + vals.size] += 0.5 * f * vals
        first, vals = basis_vphi.nonzero_components(point.vphi)
        out[offset_phi + first:offset_phi + first + vals.size] += f * vals
        return out
