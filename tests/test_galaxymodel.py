"""
Tests for the driver routines on an isotropic model in the isochrone potential.

The DF f = (-E)² has closed-form moments: with Ψ = -Φ and vesc² = 2Ψ,

    ρ = 4π (8/105) Ψ² vesc³,     σ² = vesc² / 9   (each component).

Verifies:
  1. Density and dispersions at a point, per DF component.
  2. Velocity distributions: normalization, symmetry and vanishing boundary amplitudes.
  3. Projected DF: zero beyond the escape speed, positive inside.
  4. Surface density and rms velocity against line-of-sight integrals of ρ and ρσ².
  5. Argument checks of the projection driver, and the mass seen through a sky window
     (selection ≡ 1) against ∫∫ Σ dX dY in any orientation.
  6. Staeckel and Fudge action finders driving the moments of a double power-law DF.
"""

import math

import numpy as np
import pytest
from scipy.integrate import dblquad, quad

from actions_base import Actions
from actions_spherical import ActionFinderSpherical
from actions_staeckel import ActionFinderAxisymFudge, ActionFinderAxisymStaeckel
from distribution_function import CompositeDF, DoublePowerLawDF
from galaxymodel_base import (GalaxyModel, MomentMode, compute_moments, compute_projected_df,
                              compute_projected_moments, compute_projection)
from galaxymodel_velocity import AXES, compute_velocity_distribution
from potential_spherical import Isochrone
from potential_staeckel import OblatePerfectEllipsoid

from conftest import IsotropicIsochroneDF


def reference_density(pot, R, z):
    psi = -pot.value(R, z)
    return 4 * math.pi * 8 / 105 * psi**2 * (2 * psi)**1.5


def reference_dispersion(pot, R, z):
    return -2 * pot.value(R, z) / 9


# -----------------------------------------------------------------------
# Moments at a point
# -----------------------------------------------------------------------
class TestMoments:

    @pytest.fixture(scope="class")
    def result(self):
        pot = Isochrone(mass=1.0, scale_radius=1.0)
        df = CompositeDF([IsotropicIsochroneDF(pot), IsotropicIsochroneDF(pot, norm=2.0)])
        model = GalaxyModel(pot, ActionFinderSpherical(pot, rel_tol=1e-6), df)
        return pot, compute_moments(model, (0.8, 0.6), rel_tol=1e-3, max_evals=32000)

    def test_components(self, result):
        _, res = result
        assert res.density.shape == (2,)
        assert res.second_moment.shape == (2, 6)
        assert res.density[1] == pytest.approx(2 * res.density[0], rel=1e-10)
        np.testing.assert_allclose(res.second_moment[1], res.second_moment[0], rtol=1e-10, atol=1e-14)

    def test_density(self, result):
        pot, res = result
        assert res.density[0] == pytest.approx(reference_density(pot, 0.8, 0.6), rel=2e-2)
        assert np.all(res.density_error >= 0)

    def test_dispersions(self, result):
        pot, res = result
        sigma2 = reference_dispersion(pot, 0.8, 0.6)
        np.testing.assert_allclose(res.second_moment[0, :3], sigma2, rtol=3e-2)
        assert np.all(np.abs(res.second_moment[0, 3:]) < 3e-2 * sigma2)

    def test_mean_rotation_vanishes(self, result):
        pot, res = result
        assert abs(res.first_moment[0]) < 3e-2 * math.sqrt(reference_dispersion(pot, 0.8, 0.6))

    def test_density_only(self, isotropic_model):
        res = compute_moments(isotropic_model, (1.0, 0.0), MomentMode.DENSITY, rel_tol=1e-2, max_evals=3000)
        assert res.first_moment is None and res.second_moment is None
        assert res.density[0] > 0


# -----------------------------------------------------------------------
# Velocity distribution
# -----------------------------------------------------------------------
class TestVelocityDistribution:

    R, Z = 1.0, 0.3

    def grid(self, pot, num):
        vesc = math.sqrt(-2 * pot.value(self.R, self.Z))
        return np.linspace(-vesc, vesc, num)

    def test_histogram_is_normalized(self, isochrone, isotropic_model):
        grid = self.grid(isochrone, 7)
        vdf = compute_velocity_distribution(isotropic_model, (self.R, self.Z), grid, grid, grid,
                                            order=0, rel_tol=1e-2, max_evals=8000)
        assert vdf.density == pytest.approx(reference_density(isochrone, self.R, self.Z), rel=3e-2)
        for ampl, basis in zip(vdf.amplitudes, vdf.bases):
            assert ampl @ basis.integrals() == pytest.approx(1.0, rel=1e-8)
            assert np.all(ampl >= 0)

    def test_cubic_splines(self, isochrone, isotropic_model):
        grid = self.grid(isochrone, 9)
        vdf = compute_velocity_distribution(isotropic_model, (self.R, self.Z), grid, grid, grid,
                                            order=3, rel_tol=1e-2, max_evals=8000)
        for k, axis in enumerate(AXES):
            ampl = vdf.amplitudes[k]
            assert ampl[0] == 0.0 and ampl[-1] == 0.0
            assert ampl @ vdf.bases[k].integrals() == pytest.approx(1.0, rel=5e-2)
            assert vdf.evaluate(axis, 0.0) > 0
            assert vdf.evaluate(axis, 2 * grid[-1]) == 0.0
        # the (vR, vz) distributions are symmetric by construction
        for k in (0, 1):
            np.testing.assert_allclose(vdf.amplitudes[k], vdf.amplitudes[k][::-1], rtol=1e-6, atol=1e-10)

    def test_zero_density(self, isochrone, caplog):
        model = GalaxyModel(isochrone, FixedActions(), IsotropicIsochroneDF(isochrone, norm=0.0))
        grid = self.grid(isochrone, 5)
        with caplog.at_level("WARNING", logger="galaxymodel_velocity"):
            vdf = compute_velocity_distribution(model, (self.R, self.Z), grid, grid, grid,
                                                order=1, rel_tol=1e-2, max_evals=1000)
        assert vdf.density == 0
        assert all(np.all(a == 0) for a in vdf.amplitudes)
        assert "zero density" in caplog.text


class FixedActions:
    """Action finder returning the same actions everywhere."""

    def actions(self, point):
        return Actions(0.1, 0.1, 0.1)


# -----------------------------------------------------------------------
# Projected quantities
# -----------------------------------------------------------------------
class TestProjected:

    def test_projected_df_beyond_escape_speed(self, isochrone, isotropic_model):
        vesc = math.sqrt(-2 * isochrone.value(1.0, 0.0))
        assert compute_projected_df(isotropic_model, 1.0, 1.0001 * vesc) == 0.0
        assert compute_projected_df(isotropic_model, 1.0, -1.5 * vesc) == 0.0

    def test_projected_df_inside(self, isotropic_model):
        value = compute_projected_df(isotropic_model, 1.0, 0.1, rel_tol=1e-2, max_evals=3000)
        assert value > 0 and math.isfinite(value)
        smeared = compute_projected_df(isotropic_model, 1.0, 0.1, vz_error=0.05, rel_tol=1e-2, max_evals=3000)
        assert smeared > 0 and math.isfinite(smeared)

    def test_negative_velocity_error(self, isotropic_model):
        with pytest.raises(ValueError):
            compute_projected_df(isotropic_model, 1.0, 0.1, vz_error=-1.0)

    def test_projected_moments(self, isochrone, isotropic_model):
        R = 1.0
        res = compute_projected_moments(isotropic_model, R, rel_tol=1e-2, max_evals=40000)

        def rho(z):
            return reference_density(isochrone, R, z)

        sigma = 2 * quad(rho, 0, np.inf)[0]
        v2 = 2 * quad(lambda z: rho(z) * reference_dispersion(isochrone, R, z), 0, np.inf)[0] / sigma
        assert res.surface_density == pytest.approx(sigma, rel=0.1)
        assert res.rms_height > 0 and math.isfinite(res.rms_height)
        assert res.rms_velocity == pytest.approx(math.sqrt(v2), rel=0.1)
        assert res.surface_density_error >= 0 and res.rms_velocity_error >= 0


# -----------------------------------------------------------------------
# Projection
# -----------------------------------------------------------------------
class TestProjection:

    def test_rejects_non_orthogonal_rotation(self, isotropic_model):
        with pytest.raises(ValueError):
            compute_projection(isotropic_model, lambda p: [1.0], (-1, 1), (-1, 1),
                               rotation=[[1, 0, 0], [0, 2, 0], [0, 0, 1]])

    def test_rejects_empty_range(self, isotropic_model):
        with pytest.raises(ValueError):
            compute_projection(isotropic_model, lambda p: [1.0], (1, 1), (-1, 1))

    def test_values_and_errors(self, isotropic_model):
        values, errors = compute_projection(isotropic_model, lambda p: [1.0, float(p[0] > 0)],
                                            (-0.5, 0.5), (-0.5, 0.5), num_values=2,
                                            rel_tol=1e-1, max_evals=2000)
        assert values.shape == (2,) and errors.shape == (2,)
        assert np.all(np.isfinite(values))
        assert np.all(errors >= 0)


def box_mass(pot, half_width):
    """∫∫ Σ(X, Y) dX dY over the square |X|, |Y| < half_width of a spherical model."""
    def sigma(X, Y):
        R = math.hypot(X, Y)
        return 2 * quad(lambda z: reference_density(pot, R, z), 0, np.inf)[0]

    return 4 * dblquad(sigma, 0, half_width, 0, half_width, epsrel=1e-8)[0]


def rotation_matrix(alpha, beta):
    """Rotation by beta about the x axis followed by alpha about the z axis."""
    ca, sa, cb, sb = math.cos(alpha), math.sin(alpha), math.cos(beta), math.sin(beta)
    rot_z = np.array([[ca, -sa, 0], [sa, ca, 0], [0, 0, 1]])
    rot_x = np.array([[1, 0, 0], [0, cb, -sb], [0, sb, cb]])
    return rot_z @ rot_x


class TestProjectedMass:
    """Selection ≡ 1 turns the projection into the mass seen through a sky window."""

    HALF_WIDTH = 0.5

    @pytest.fixture(scope="class")
    def exact(self):
        return box_mass(Isochrone(mass=1.0, scale_radius=1.0), self.HALF_WIDTH)

    @pytest.mark.parametrize("rotation", [None, rotation_matrix(0.7, 1.1)])
    def test_matches_surface_density(self, isotropic_model, exact, rotation):
        h = self.HALF_WIDTH
        values, errors = compute_projection(isotropic_model, lambda p: [1.0], (-h, h), (-h, h),
                                            rotation=rotation, rel_tol=1e-2, max_evals=100_000)
        assert abs(values[0] - exact) <= 3 * errors[0]
        assert values[0] == pytest.approx(exact, rel=0.3)

    def test_rotation_about_line_of_sight(self, isotropic_model):
        # turning a square window by 90 degrees about the line of sight keeps every
        # sampled point at the same (R, z) of a spherical model
        h = self.HALF_WIDTH
        kwargs = dict(rel_tol=1e-1, max_evals=2000)
        values, _ = compute_projection(isotropic_model, lambda p: [1.0], (-h, h), (-h, h), **kwargs)
        turned, _ = compute_projection(isotropic_model, lambda p: [1.0], (-h, h), (-h, h),
                                       rotation=rotation_matrix(0.5 * math.pi, 0.0), **kwargs)
        assert turned[0] == pytest.approx(values[0], rel=1e-8)


# -----------------------------------------------------------------------
# Staeckel models
# -----------------------------------------------------------------------
class TestStaeckelModel:
    """Moments of a double power-law DF in the oblate perfect ellipsoid."""

    POINT = (1.0, 0.3)

    @pytest.fixture(scope="class")
    def ellipsoid(self):
        return OblatePerfectEllipsoid(mass=3.0, axis_a=1.0, axis_c=0.5)

    @pytest.fixture(scope="class")
    def df(self):
        return DoublePowerLawDF(norm=1.0, J0=0.3, slope_in=1.0, slope_out=5.0,
                                coef_h=(1.0, 1.0, 0.8), coef_g=(1.0, 1.0, 0.8))

    @pytest.fixture(scope="class")
    def staeckel(self, ellipsoid, df):
        records = []
        model = GalaxyModel(ellipsoid, ActionFinderAxisymStaeckel(ellipsoid), df)
        res = compute_moments(model, self.POINT, MomentMode.DENSITY, rel_tol=1e-3, max_evals=5000,
                              diagnostics=records.append)
        return res, records

    def test_density(self, staeckel):
        res, records = staeckel
        assert records == []
        assert res.density[0] > 0 and math.isfinite(res.density[0])
        assert 0 <= res.density_error[0] < res.density[0]

    def test_fudge_in_exact_coordinates(self, ellipsoid, df, staeckel):
        res, _ = staeckel
        records = []
        fudge = ActionFinderAxisymFudge(ellipsoid, coordsys=ellipsoid.coordsys)
        model = GalaxyModel(ellipsoid, fudge, df)
        other = compute_moments(model, self.POINT, MomentMode.DENSITY, rel_tol=1e-3, max_evals=5000,
                                diagnostics=records.append)
        assert records == []
        assert other.density[0] == pytest.approx(res.density[0], rel=1e-3)
