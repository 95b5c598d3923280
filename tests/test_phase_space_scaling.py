"""
Tests for coordinate conversions and the scaled phase-space map.

Verifies:
  1. Cylindrical <-> Cartesian and prolate spheroidal round trips.
  2. unscale -> scale recovers the scaled variables.
  3. The reported Jacobians match finite-difference Jacobians of the maps.
  4. Zero-Jacobian sentinels and the escape-velocity failure.
"""

import math

import numpy as np
import pytest

from coordinates import (PosVelCar, PosVelCyl, ProlSph, posvel_car_to_cyl, posvel_cyl_to_car,
                         to_pos_vel_car, to_pos_vel_cyl)
from errors import UndeterminedEscapeVelocity
from phase_space_scaling import (ScaledPhaseSpaceMap, VelocityScaling, escape_velocity,
                                 scale_infinite, scale_velocity, unscale_coords, unscale_infinite,
                                 unscale_two_sided_exp, unscale_velocity)
from potential_base import AxisymmetricPotential


class PositivePotential(AxisymmetricPotential):
    """Unphysical potential that is positive everywhere."""

    def _phi(self, R, z, xp):
        return 1.0 + 0.0 * R * z


def numerical_jacobian(fnc, s, h=1e-6):
    """|det d fnc / d s| by central differences."""
    s = np.asarray(s, dtype=float)
    cols = []
    for i in range(len(s)):
        dp, dm = s.copy(), s.copy()
        dp[i] += h
        dm[i] -= h
        cols.append((np.asarray(fnc(dp)) - np.asarray(fnc(dm))) / (2 * h))
    return abs(np.linalg.det(np.array(cols).T))


# -----------------------------------------------------------------------
# Coordinate systems
# -----------------------------------------------------------------------
class TestCoordinates:

    def test_cylindrical_cartesian_round_trip(self):
        point = PosVelCyl(1.3, -0.4, 2.0, 0.1, -0.3, 0.8)
        back = to_pos_vel_cyl(to_pos_vel_car(point))
        np.testing.assert_allclose(back, point, rtol=1e-13, atol=1e-15)

    def test_on_axis_point(self):
        back = to_pos_vel_cyl(PosVelCar(0.0, 0.0, 1.0, 0.2, 0.3, 0.4))
        assert back.R == 0.0 and back.phi == 0.0
        assert back.vz == 0.4

    def test_batched_conversion(self, rng):
        cyl = np.column_stack([rng.random(20) + 0.1, rng.normal(size=20), rng.random(20) * 6.2,
                               rng.normal(size=(20, 3))])
        back = np.asarray(posvel_car_to_cyl(posvel_cyl_to_car(cyl)))
        np.testing.assert_allclose(back, cyl, rtol=1e-12, atol=1e-12)

    def test_prolate_spheroidal_round_trip(self):
        cs = ProlSph(alpha=-2.56, gamma=-1.0)
        for R, z in [(0.3, 0.1), (2.0, -1.5), (5.0, 0.0)]:
            lam_g, nu_g = cs.shifted_from_cyl(R, z)
            assert lam_g >= cs.delta2 >= nu_g >= 0
            back = cs.shifted_to_cyl(lam_g, nu_g)
            assert back[0] == pytest.approx(R, rel=1e-12)
            assert back[1] == pytest.approx(abs(z), rel=1e-12, abs=1e-14)

    def test_prolate_spheroidal_defining_equation(self):
        """R²/(τ+α) + z²/(τ+γ) = 1 for τ = λ and ν."""
        cs = ProlSph(alpha=-3.0, gamma=-1.0)
        R, z = 1.4, 0.6
        lam, nu = cs.from_cyl(R, z)
        for tau in (lam, nu):
            assert R * R / (tau + cs.alpha) + z * z / (tau + cs.gamma) == pytest.approx(1.0, rel=1e-10)

    def test_focal_distance(self):
        cs = ProlSph.from_focal_distance(2.0)
        assert cs.delta2 == pytest.approx(4.0)

    def test_invalid_coordinate_system(self):
        with pytest.raises(ValueError):
            ProlSph(alpha=1.0, gamma=0.0)
        with pytest.raises(ValueError):
            ProlSph.from_focal_distance(0.0)


# -----------------------------------------------------------------------
# Velocity and position scaling
# -----------------------------------------------------------------------
class TestScaling:

    @pytest.mark.parametrize("s", [(0.3, 0.4, 0.2), (0.8, 0.9, 0.7), (0.55, 0.1, 0.45)])
    def test_velocity_round_trip(self, s):
        vel, _ = unscale_velocity(s, 1.7, 0.4)
        np.testing.assert_allclose(scale_velocity(vel, 1.7, 0.4), s, rtol=1e-10)

    def test_speed_covers_escape_ball(self):
        (vR, vz, vphi), _ = unscale_velocity((1.0, 0.3, 0.3), 2.0, 0.35)
        assert math.sqrt(vR**2 + vz**2 + vphi**2) == pytest.approx(2.0, rel=1e-12)
        (vR, vz, vphi), _ = unscale_velocity((0.0, 0.3, 0.3), 2.0, 0.35)
        assert vR == vz == vphi == 0.0

    @pytest.mark.parametrize("scaling", [VelocityScaling(), VelocityScaling(speed_power=3.0, theta_power=1.5)])
    @pytest.mark.parametrize("s", [(0.3, 0.4, 0.2), (0.7, 0.6, 0.9)])
    def test_velocity_jacobian(self, scaling, s):
        vesc, zeta = 1.3, 0.6
        _, jac = unscale_velocity(s, vesc, zeta, scaling)
        expected = numerical_jacobian(lambda x: unscale_velocity(x, vesc, zeta, scaling)[0], s)
        assert jac == pytest.approx(expected, rel=1e-4)

    @pytest.mark.parametrize("s", [(0.3, 0.4, 0.2), (0.6, 0.85, 0.9)])
    def test_position_jacobian(self, s):
        def to_cartesian(x):
            (R, z, phi), _ = unscale_coords(x, radial_scale=2.0)
            return [R * math.cos(phi), R * math.sin(phi), z]

        _, jac = unscale_coords(s, radial_scale=2.0)
        assert jac == pytest.approx(numerical_jacobian(to_cartesian, s), rel=1e-4)

    def test_infinite_maps(self):
        x, dx = unscale_infinite(0.7, 2.0)
        assert scale_infinite(x, 2.0) == pytest.approx(0.7, rel=1e-13)
        h = 1e-7
        assert dx == pytest.approx((unscale_infinite(0.7 + h, 2.0)[0] - unscale_infinite(0.7 - h, 2.0)[0]) / (2 * h),
                                   rel=1e-6)
        x, dx = unscale_two_sided_exp(0.3)
        assert x < 0
        assert dx == pytest.approx((unscale_two_sided_exp(0.3 + h)[0] - unscale_two_sided_exp(0.3 - h)[0]) / (2 * h),
                                   rel=1e-5)

    def test_zero_jacobian_at_infinity(self):
        _, jac = unscale_coords((1.0, 0.5, 0.5))
        assert jac == 0.0
        assert unscale_infinite(1.0)[1] == 0.0
        assert unscale_two_sided_exp(0.5) == (0.0, 0.0)

    def test_invalid_scaling(self):
        with pytest.raises(ValueError):
            VelocityScaling(zeta_min=0.5, zeta_max=0.2)


# -----------------------------------------------------------------------
# Full phase-space map
# -----------------------------------------------------------------------
class TestPhaseSpaceMap:

    def test_round_trip(self, isochrone):
        psmap = ScaledPhaseSpaceMap(isochrone, radial_scale=1.5)
        s = np.array([0.4, 0.3, 0.6, 0.45, 0.7, 0.2])
        point, jac = psmap.unscale(s)
        assert jac > 0
        np.testing.assert_allclose(psmap.scale(point), s, rtol=1e-9)

    def test_jacobian_is_product(self, isochrone):
        psmap = ScaledPhaseSpaceMap(isochrone)
        s = np.array([0.4, 0.3, 0.6, 0.45, 0.7, 0.2])
        point, jac = psmap.unscale(s)
        _, jac_pos = unscale_coords(s[:3])
        vesc, zeta = psmap.escape_velocity(point.R, point.z)
        _, jac_vel = unscale_velocity(s[3:], vesc, zeta)
        assert jac == pytest.approx(jac_pos * jac_vel, rel=1e-14)

    def test_escape_velocity(self, isochrone):
        vesc, zeta = escape_velocity(isochrone, 1.0, 0.5)
        assert vesc == pytest.approx(math.sqrt(-2 * isochrone.value(1.0, 0.5)), rel=1e-14)
        assert 0.1 <= zeta <= 0.9
        assert escape_velocity(isochrone, math.inf, 0.0) == (0.0, 0.5)

    def test_undetermined_escape_velocity(self):
        with pytest.raises(UndeterminedEscapeVelocity, match="R=1, z=2"):
            escape_velocity(PositivePotential(), 1.0, 2.0)

    def test_invalid_radial_scale(self, isochrone):
        with pytest.raises(ValueError):
            ScaledPhaseSpaceMap(isochrone, radial_scale=0.0)
