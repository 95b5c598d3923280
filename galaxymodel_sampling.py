"""
Monte-Carlo samples of a galaxy model.

sample_pos_vel
    importance sampling of the DF over the six scaled phase-space variables;
    every point carries the mass total/num_samples.
sample_density
    positions drawn from an axisymmetric density ρ(R, z) in the scaled
    coordinates of unscale_coords; every point carries the mass total/num_samples.
sample_actions
    a modest number of action triples drawn from the DF, one torus per triple
    and several random angles per torus; every point carries the mass
    total/(num_tori * num_angles).
"""
from __future__ import annotations
from typing import Callable, NamedTuple, Optional

import logging
import numpy as np
from tqdm import tqdm

from actions_base import Actions
from actions_spherical import SphericalTorus
from constants import DEFAULT_MAX_EVALS, DEFAULT_SAMPLER_POOL
from coordinates import posvel_cyl_to_car
from distribution_function import sample_actions_from_df
from galaxymodel_integrands import Diagnostics, DFIntegrandSixDim, GalaxyModel
from math_core import sample_ndim
from phase_space_scaling import unscale_coords

Array = np.ndarray

log = logging.getLogger(__name__)


class SampledPoints(NamedTuple):
    posvel: Array   # (N, 6): R, z, phi, vR, vz, vphi; (N, 3) positions from sample_density
    mass: Array     # (N,)

    def cartesian(self) -> Array:
        """The points as rows of (x, y, z, vx, vy, vz), or (x, y, z) for positions only."""
        posvel = np.asarray(self.posvel, dtype=float)
        ncol = posvel.shape[1]
        if ncol == 3:
            posvel = np.hstack([posvel, np.zeros_like(posvel)])
        return np.asarray(posvel_cyl_to_car(posvel))[:, :ncol]


class SamplingResult(NamedTuple):
    points: SampledPoints
    total_mass: float
    total_mass_error: float
    actions: Optional[Array] = None   # (N, 3) actions of each point, if requested


def sample_pos_vel(
    model: GalaxyModel,
    num_samples: int,
    radial_scale: float = 1.0,
    max_evals: int = DEFAULT_MAX_EVALS,
    pool_size: int = DEFAULT_SAMPLER_POOL,
    rng=None,
    diagnostics: Optional[Diagnostics] = None,
) -> SamplingResult:
    """
    Draw positions and velocities distributed as the DF.

    Parameters
    ----------
    num_samples  : number of output points
    radial_scale : scale of the radial tangent map (choose near the half-mass radius)
    max_evals    : bound on the DF evaluations of the sampler
    """
    fnc = DFIntegrandSixDim(model, radial_scale, diagnostics)
    scaled, total, error = sample_ndim(fnc, np.zeros(6), np.ones(6), num_samples,
                                       max_evals=max_evals, pool_size=pool_size, rng=rng)
    posvel = np.array([fnc.unscale_vars(row)[0] for row in scaled])
    mass = np.full(len(posvel), total / len(posvel))
    log.info("sample_pos_vel: %d points, total mass %.6g +- %.2g", len(posvel), total, error)
    return SamplingResult(SampledPoints(posvel, mass), total, error)


def sample_density(
    density: Callable,
    num_samples: int,
    radial_scale: float = 1.0,
    max_evals: int = DEFAULT_MAX_EVALS,
    pool_size: int = DEFAULT_SAMPLER_POOL,
    rng=None,
) -> SamplingResult:
    """
    Draw positions distributed as an axisymmetric density.

    Parameters
    ----------
    density      : callable ρ(R, z), vectorized over numpy arrays
    num_samples  : number of output points
    radial_scale : scale of the radial tangent map

    Returns
    -------
    SamplingResult whose points hold (R, z, phi) rows, each of mass total/num_samples
    """
    def integrand(vars):
        unscaled = [unscale_coords(row, radial_scale) for row in vars]
        pos = np.array([u[0] for u in unscaled]).reshape(len(vars), 3)
        jac = np.array([u[1] for u in unscaled])
        inside = jac > 0
        values = np.zeros(len(vars))
        values[inside] = np.asarray(density(pos[inside, 0], pos[inside, 1]), dtype=float) * jac[inside]
        return values

    scaled, total, error = sample_ndim(integrand, np.zeros(3), np.ones(3), num_samples,
                                       max_evals=max_evals, pool_size=pool_size, rng=rng)
    positions = np.array([unscale_coords(row, radial_scale)[0] for row in scaled])
    mass = np.full(len(positions), total / len(positions))
    log.info("sample_density: %d points, total mass %.6g +- %.2g", len(positions), total, error)
    return SamplingResult(SampledPoints(positions, mass), total, error)


def sample_actions(
    model: GalaxyModel,
    num_samples: int,
    torus_factory: Callable = SphericalTorus,
    return_actions: bool = False,
    progress: bool = False,
    max_evals: int = DEFAULT_MAX_EVALS,
    rng=None,
) -> SamplingResult:
    """
    Draw phase-space points by sampling actions and then angles on their tori.

    Parameters
    ----------
    num_samples    : number of output points
    torus_factory  : callable (potential, actions) -> object with
                     ``sample(num_points, rng) -> (N, 6) array``
    return_actions : also return the actions of every point
    progress       : show a progress bar over the tori
    """
    rng = np.random.default_rng(rng)
    num_samples = int(num_samples)
    if num_samples <= 0:
        raise ValueError("sample_actions: number of samples must be positive")

    # --- Step 1: action triples from the DF ---
    num_angles = min(num_samples // 100 + 1, 16)
    num_tori = num_samples // num_angles + 1
    actions, total, error = sample_actions_from_df(model.df, num_tori, max_evals=max_evals, rng=rng)
    point_mass = total / (num_tori * num_angles)

    # --- Step 2: random angles on each torus ---
    posvel = []
    point_actions = []
    count = 0
    for J in tqdm(actions, desc="sampling tori", disable=not progress):
        if count >= num_samples:
            break
        torus = torus_factory(model.potential, Actions(*J))
        posvel.append(torus.sample(num_angles, rng))
        point_actions.append(np.tile(J, (num_angles, 1)))
        count += num_angles

    posvel = np.concatenate(posvel)[:num_samples]
    mass = np.full(len(posvel), point_mass)
    acts = np.concatenate(point_actions)[:num_samples] if return_actions else None
    return SamplingResult(SampledPoints(posvel, mass), total, error, acts)


if __name__ == "__main__":
    import matplotlib.pyplot as plt

    from actions_spherical import ActionFinderSpherical
    from distribution_function import DoublePowerLawDF
    from potential_spherical import Isochrone

    logging.basicConfig(level=logging.INFO)

    pot = Isochrone(mass=1.0, scale_radius=1.0)
    df = DoublePowerLawDF(norm=1.0, J0=1.0, slope_in=0.5, slope_out=6.0)
    model = GalaxyModel(pot, ActionFinderSpherical(pot), df)

    res = sample_actions(model, 2000, progress=True, rng=1)
    xyz = res.points.cartesian()
    r = np.linalg.norm(xyz[:, :3], axis=1)

    fig, axs = plt.subplots(1, 2, figsize=(12, 5))
    axs[0].scatter(xyz[:, 0], xyz[:, 1], s=1)
    axs[0].set_xlim(-10, 10); axs[0].set_ylim(-10, 10)
    axs[0].set_xlabel('x'); axs[0].set_ylabel('y')
    axs[0].set_title('Sampled points (total mass %.3g)' % res.total_mass)
    axs[1].hist(np.log10(r), bins=50)
    axs[1].set_xlabel('log10 r'); axs[1].set_ylabel('N')
    plt.tight_layout()
    plt.show()
