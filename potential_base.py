"""
Axisymmetric potentials with closed-form expressions.

A subclass writes its potential once, as ``_phi(R, z, xp)`` against an array
namespace ``xp``. ``value`` evaluates it with numpy (fast, used inside the action
integrals), while ``evaluate`` differentiates the jax version to return the
gradient and, on request, the Hessian in (R, z).
"""
from __future__ import annotations
from functools import cached_property
from typing import NamedTuple, Optional

import numpy as np
import jax
import jax.numpy as jnp

jax.config.update("jax_enable_x64", True)

Array = np.ndarray


class PotentialDerivs(NamedTuple):
    value: float
    dR: float
    dz: float
    hessian: Optional[Array] = None   # [[d2Phi/dR2, d2Phi/dRdz], [d2Phi/dRdz, d2Phi/dz2]]


class AxisymmetricPotential:
    """Base class of the analytic potentials; subclasses implement ``_phi``."""

    is_spherical = False

    def _phi(self, R, z, xp):
        raise NotImplementedError

    def value(self, R, z):
        """Φ(R, z) for scalars or broadcastable arrays."""
        if np.ndim(R) == 0 and np.ndim(z) == 0:
            return float(self._phi(float(R), float(z), np))
        return self._phi(np.asarray(R, float), np.asarray(z, float), np)

    @cached_property
    def _value_and_grad(self):
        return jax.jit(jax.value_and_grad(lambda R, z: self._phi(R, z, jnp), argnums=(0, 1)))

    @cached_property
    def _hessian(self):
        return jax.jit(jax.hessian(lambda R, z: self._phi(R, z, jnp), argnums=(0, 1)))

    def evaluate(self, R: float, z: float, hessian: bool = False) -> PotentialDerivs:
        """Potential, gradient and (optionally) Hessian at a single point (R, z)."""
        R = float(R); z = float(z)
        val, (dR, dz) = self._value_and_grad(R, z)
        hess = None
        if hessian:
            (hRR, hRz), (_, hzz) = self._hessian(R, z)
            hess = np.array([[float(hRR), float(hRz)], [float(hRz), float(hzz)]])
        return PotentialDerivs(float(val), float(dR), float(dz), hess)

    def circular_velocity(self, R):
        """v_c(R) in the equatorial plane."""
        dR = self.evaluate(R, 0.0).dR
        return float(np.sqrt(max(R * dR, 0.0)))
