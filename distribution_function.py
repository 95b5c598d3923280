"""
Action-based distribution functions and the action-space sampler.

A distribution function maps actions (Jr, Jz, Jphi) to one or more non-negative
component values; ``eval`` returns them as an array indexed by component. The
total mass of a DF is (2π)³ ∫ f(J) d³J, since d³x d³v = d³J d³θ.
"""
from __future__ import annotations
from functools import cached_property
from typing import Optional, Protocol, Sequence, Tuple

import math
import numpy as np
import jax
import jax.numpy as jnp

from actions_base import Actions
from constants import DEFAULT_MAX_EVALS
from math_core import sample_ndim

Array = np.ndarray


class DistributionFunction(Protocol):
    num_components: int
    action_scale: float

    def eval(self, actions: Actions) -> Array:
        ...

    def batch_total(self, J: Array) -> Array:
        ...


class BaseDistributionFunction:
    """Single-component DF; subclasses implement ``_f(Jr, Jz, Jphi, xp)``."""

    num_components = 1
    action_scale = 1.0

    def _f(self, Jr, Jz, Jphi, xp):
        raise NotImplementedError

    def eval(self, actions: Actions) -> Array:
        return np.array([float(self._f(actions[0], actions[1], actions[2], np))])

    def total(self, actions: Actions) -> float:
        return float(np.sum(self.eval(actions)))

    @cached_property
    def _batch(self):
        return jax.jit(lambda J: self._f(J[:, 0], J[:, 1], J[:, 2], jnp))

    def batch_total(self, J: Array) -> Array:
        """Total DF value for an (N,3) array of actions."""
        return np.asarray(self._batch(jnp.asarray(J, dtype=float)))


class DoublePowerLawDF(BaseDistributionFunction):
    """
    Double power-law DF (Posti et al. 2015; Vasiliev 2019):

        f(J) = N0/(2π J0)³ [1 + (J0/h(J))^η]^(Γ/η) [1 + (g(J)/J0)^η]^(-B/η) exp[-(g/Jcutoff)²]

    with h = hr Jr + hz Jz + hphi |Jphi| and g = gr Jr + gz Jz + gphi |Jphi|.

    Parameters
    ----------
    norm   : N0, overall normalization
    J0     : action scale of the break between the two slopes
    slope_in, slope_out : Γ < 3 and B > 3
    steepness : η, sharpness of the transition
    coef_h, coef_g : (hr, hz, hphi) and (gr, gz, gphi)
    J_cutoff : optional exponential cutoff in g
    """

    def __init__(
        self,
        norm: float = 1.0,
        J0: float = 1.0,
        slope_in: float = 1.0,
        slope_out: float = 4.0,
        steepness: float = 1.0,
        coef_h: Sequence[float] = (1.0, 1.0, 1.0),
        coef_g: Sequence[float] = (1.0, 1.0, 1.0),
        J_cutoff: Optional[float] = None,
    ):
        self.norm = float(norm)
        self.J0 = float(J0)
        self.slope_in = float(slope_in)
        self.slope_out = float(slope_out)
        self.steepness = float(steepness)
        self.coef_h = tuple(float(c) for c in coef_h)
        self.coef_g = tuple(float(c) for c in coef_g)
        self.J_cutoff = None if J_cutoff is None else float(J_cutoff)
        if not self.norm >= 0 or not self.J0 > 0 or not self.steepness > 0:
            raise ValueError("DoublePowerLawDF: need norm >= 0, J0 > 0, steepness > 0")
        if self.slope_in >= 3 or (self.slope_out <= 3 and self.J_cutoff is None):
            raise ValueError("DoublePowerLawDF: need slope_in < 3 and slope_out > 3 (or a cutoff)")
        if min(self.coef_h + self.coef_g) <= 0:
            raise ValueError("DoublePowerLawDF: coefficients must be positive")
        self.action_scale = self.J0

    def _f(self, Jr, Jz, Jphi, xp):
        hr, hz, hp = self.coef_h
        gr, gz, gp = self.coef_g
        h = hr * Jr + hz * Jz + hp * xp.abs(Jphi)
        g = gr * Jr + gz * Jz + gp * xp.abs(Jphi)
        eta = self.steepness
        val = (self.norm / (2 * np.pi * self.J0)**3
               * (1 + (self.J0 / h)**eta)**(self.slope_in / eta)
               * (1 + (g / self.J0)**eta)**(-self.slope_out / eta))
        if self.J_cutoff is not None:
            val = val * xp.exp(-(g / self.J_cutoff)**2)
        return val


class CompositeDF:
    """Sum of several DFs, each reported as a separate component."""

    def __init__(self, components: Sequence[DistributionFunction]):
        self.components = list(components)
        if not self.components:
            raise ValueError("CompositeDF: at least one component is needed")
        self.num_components = sum(c.num_components for c in self.components)
        self.action_scale = max(c.action_scale for c in self.components)

    def eval(self, actions: Actions) -> Array:
        return np.concatenate([c.eval(actions) for c in self.components])

    def total(self, actions: Actions) -> float:
        return float(np.sum(self.eval(actions)))

    def batch_total(self, J: Array) -> Array:
        return np.sum([c.batch_total(J) for c in self.components], axis=0)


# -----------------------------------------------------------------------------
#                            ACTION-SPACE SAMPLING
# -----------------------------------------------------------------------------

def unscale_actions(s: Array, scale: float) -> Tuple[Array, Array]:
    """Unit cube (N,3) -> actions (N,3) and the Jacobian d³J/d³s.

    Jr, Jz = J0 s/(1-s) on [0, ∞); Jphi = J0 tan(π(s-1/2)) on (-∞, ∞).
    """
    s = np.asarray(s, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        J = np.empty_like(s)
        J[:, 0] = scale * s[:, 0] / (1 - s[:, 0])
        J[:, 1] = scale * s[:, 1] / (1 - s[:, 1])
        J[:, 2] = scale * np.tan(np.pi * (s[:, 2] - 0.5))
        jac = (scale / (1 - s[:, 0])**2 * scale / (1 - s[:, 1])**2
               * scale * np.pi / np.cos(np.pi * (s[:, 2] - 0.5))**2)
    return J, jac


def sample_actions_from_df(
    df: DistributionFunction,
    num_samples: int,
    max_evals: int = DEFAULT_MAX_EVALS,
    rng=None,
) -> Tuple[Array, float, float]:
    """Draw action triples distributed as the total DF.

    Returns
    -------
    actions : (num_samples, 3) array of (Jr, Jz, Jphi)
    total_mass : (2π)³ ∫ f d³J
    error : statistical error of total_mass
    """
    scale = float(df.action_scale)

    def integrand(s):
        J, jac = unscale_actions(s, scale)
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            return df.batch_total(J) * jac * (2 * np.pi)**3

    points, total, error = sample_ndim(integrand, np.zeros(3), np.ones(3), num_samples,
                                       max_evals=max_evals, rng=rng)
    actions, _ = unscale_actions(points, scale)
    return actions, total, error
