"""
Pytest fixtures for the action finder and DF integration test suite.
"""

import math

import numpy as np
import pytest

from actions_spherical import ActionFinderSpherical
from actions_staeckel import ActionFinderAxisymStaeckel
from distribution_function import BaseDistributionFunction
from galaxymodel_integrands import GalaxyModel
from potential_spherical import Isochrone
from potential_staeckel import OblatePerfectEllipsoid


class IsotropicIsochroneDF(BaseDistributionFunction):
    """f = (-E)^power, with E(J) the closed-form isochrone Hamiltonian."""

    def __init__(self, potential, power=2.0, norm=1.0):
        self.GM = potential.G * potential.mass
        self.b = potential.scale_radius
        self.power = power
        self.norm = norm

    def _f(self, Jr, Jz, Jphi, xp):
        L = Jz + xp.abs(Jphi)
        E = -0.5 * (self.GM / (Jr + 0.5 * (L + xp.sqrt(L * L + 4 * self.GM * self.b))))**2
        return self.norm * (-E)**self.power

    def of_energy(self, E):
        return self.norm * (-E)**self.power if E < 0 else 0.0


class SeparableExponentialDF(BaseDistributionFunction):
    """f = exp(-(Jr + Jz + |Jphi|)/J0); every action marginal is exponential."""

    def __init__(self, J0=1.0):
        self.J0 = J0
        self.action_scale = J0

    def _f(self, Jr, Jz, Jphi, xp):
        return xp.exp(-(Jr + Jz + xp.abs(Jphi)) / self.J0)

    @property
    def total_mass(self):
        return (2 * math.pi)**3 * 2 * self.J0**3


@pytest.fixture
def ellipsoid():
    """Oblate perfect ellipsoid massive enough to bind the test points."""
    return OblatePerfectEllipsoid(mass=3.0, axis_a=1.0, axis_c=0.5)


@pytest.fixture
def staeckel_finder(ellipsoid):
    return ActionFinderAxisymStaeckel(ellipsoid)


@pytest.fixture
def isochrone():
    return Isochrone(mass=1.0, scale_radius=1.0)


@pytest.fixture
def spherical_finder(isochrone):
    return ActionFinderSpherical(isochrone, rel_tol=1e-8)


@pytest.fixture
def isotropic_df(isochrone):
    return IsotropicIsochroneDF(isochrone)


@pytest.fixture
def isotropic_model(isochrone, isotropic_df):
    return GalaxyModel(isochrone, ActionFinderSpherical(isochrone, rel_tol=1e-6), isotropic_df)


@pytest.fixture
def rng():
    return np.random.default_rng(42)
