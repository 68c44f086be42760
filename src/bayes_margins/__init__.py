"""bayes_margins — Marginal predictions and effects for Bayesian mixed models.

Integrates random effects out of the predictions of a fitted Bayesian
mixed-effects regression by Monte Carlo simulation, draw by draw, and
returns posterior distributions of marginal (population-averaged)
predictions, average marginal effects and marginal coefficients.
Correlated random-effect samples are drawn from per-draw SDs and
correlation Cholesky factors; identical rows are compacted before
integration; every (seed, block, group) unit owns one random-number
stream keyed by the group label, so results are reproducible and
independent of parallel execution and of which other groups are
present.

Public API:
    .. autosummary::
        prediction
        marginal_effects
        marginal_coefficients
        integrate_random_effects
        average_over_rows
        fixed_linear_predictor
        fixed_effects_from_draws
        design_matrix
        draw_correlated_normals
        integrate_mvn
        cholesky_from_correlation
        validate_cholesky
        expand_table
        naive_join
        compact_rows
        row_to_matrix
        row_boot_means
        posterior_boot_means
        resolve_seeds
        get_backend
        set_backend
        ModelFamily
        GaussianFamily
        BernoulliFamily
        PoissonFamily
        NegativeBinomialFamily
        GammaFamily
        resolve_family
        RandomEffectBlock
        BoundBlock
        LinearPredictorTable
        SeedPlan
        MarginalEngine
        IntegrationContext
        MarginalPredictionResult
        MarginalEffectResult
        MarginalCoefResult
"""

from ._config import get_backend, set_backend
from ._context import IntegrationContext
from ._results import MarginalCoefResult, MarginalEffectResult, MarginalPredictionResult
from .bootstrap import posterior_boot_means, row_boot_means
from .core import marginal_coefficients, marginal_effects, prediction
from .design import design_matrix, fixed_effects_from_draws, fixed_linear_predictor
from .engine import MarginalEngine
from .expand import (
    LinearPredictorTable,
    compact_rows,
    expand_table,
    naive_join,
    row_to_matrix,
)
from .families import (
    BernoulliFamily,
    GammaFamily,
    GaussianFamily,
    ModelFamily,
    NegativeBinomialFamily,
    PoissonFamily,
    resolve_family,
)
from .integrate import average_over_rows, integrate_random_effects
from .random_effects import BoundBlock, RandomEffectBlock
from .sampling import (
    cholesky_from_correlation,
    draw_correlated_normals,
    integrate_mvn,
    validate_cholesky,
)
from .seeding import SeedPlan, resolve_seeds

__all__ = [
    "MarginalCoefResult",
    "MarginalEffectResult",
    "MarginalPredictionResult",
    "IntegrationContext",
    "prediction",
    "marginal_effects",
    "marginal_coefficients",
    "integrate_random_effects",
    "average_over_rows",
    "fixed_linear_predictor",
    "fixed_effects_from_draws",
    "design_matrix",
    "draw_correlated_normals",
    "integrate_mvn",
    "cholesky_from_correlation",
    "validate_cholesky",
    "expand_table",
    "naive_join",
    "compact_rows",
    "row_to_matrix",
    "row_boot_means",
    "posterior_boot_means",
    "resolve_seeds",
    "get_backend",
    "set_backend",
    "ModelFamily",
    "GaussianFamily",
    "BernoulliFamily",
    "PoissonFamily",
    "NegativeBinomialFamily",
    "GammaFamily",
    "resolve_family",
    "RandomEffectBlock",
    "BoundBlock",
    "LinearPredictorTable",
    "SeedPlan",
    "MarginalEngine",
]

__version__ = "0.1.0"
