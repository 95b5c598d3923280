"""Numerical constants shared by the action finders, integrands and drivers."""

EPSILON = 1e-12

# relative accuracy of the 1d action integrals
ACCURACY_ACTION = 1e-6

# bracket searches: geometric steps toward a singular / infinite endpoint
MAX_ROOT_STEPS = 1100

# default tolerances of the N-dimensional cubature and sampler
DEFAULT_REL_TOL = 1e-3
DEFAULT_MAX_EVALS = 100_000
DEFAULT_SAMPLER_POOL = 2048
MIN_SAMPLER_POOL = 16

# default coordinate system of the Fudge action finder
FUDGE_ALPHA = -2.56
FUDGE_GAMMA = -1.0

# positions beyond this radius (or below its inverse) carry zero weight
RADIUS_LIMIT = 1e100
