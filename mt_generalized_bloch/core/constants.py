# mt_generalized_bloch/core/constants.py
import numpy as np

# Magic angle cosine: the super-Lorentzian integrand is singular at cos(theta) = 1/sqrt(3)
MAGIC_ANGLE_COS = 1.0 / np.sqrt(3.0)

# Number of samples used when replacing a Green's function by a cubic spline
GREENS_INTERPOLATION_SAMPLES = 2**11 + 1

# Relative slack when checking an interpolant's support (floating point round-off at the edges)
DOMAIN_RELATIVE_SLACK = 1e-12

# Adaptive quadrature settings for the memory integrals
QUAD_EPSABS = 1e-10
QUAD_EPSREL = 1e-8
QUAD_LIMIT = 200

# ODE / DDE solver defaults
DEFAULT_SOLVER_METHOD = 'DOP853'
DEFAULT_RTOL = 1e-8
DEFAULT_ATOL = 1e-10

# R2sl pre-computation
DEFAULT_R2SL_GRID_SIZE = 64
MIN_R2SL_GRID_SIZE = 4  # bicubic spline needs at least 4 knots per axis
R2SL_ZERO_FLIP_FRACTION = 1e-2  # alpha' = 0 cells are evaluated at this fraction of the grid step
# Values of the dimensionless rate rho * TRF scanned for a sign change before root finding
R2SL_BRACKET_GRID = np.concatenate(([0.0], np.geomspace(1e-4, 1e4, 161)))

# Pulse-train bookkeeping
ECHO_TIME_RELATIVE_TOLERANCE = 1e-10
