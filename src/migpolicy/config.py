"""Configuration constants for the migration policy analysis."""

DEFAULT_COUNTRY = "United Kingdom"
DEFAULT_MIN_YEAR = 1990
DEFAULT_TARGET_GROUP = "refugees-asylum-seekers"

# Sparse target group dropped from per-group trends (too few records per year)
SPARSE_TARGET_GROUPS = ("diaspora",)

TREND_SMOOTHING_WINDOW = 3  # years, centred

# Mixture model sweep
CANDIDATE_KS = (1, 2, 3, 4)
EM_MAX_ITER = 500
EM_TOL = 1e-6  # change in per-sample log-likelihood
VARIANCE_FLOOR = 1e-6  # clamp for degenerate component variances
# A component at or below this variance sits on a single value (reg_covar adds the floor)
FLOORED_VARIANCE = 2 * VARIANCE_FLOOR
RANDOM_SEED = 42

CODEBOOK_SUFFIX = ".codebook.json"
