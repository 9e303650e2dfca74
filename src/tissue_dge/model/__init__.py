"""
Quasi-likelihood negative binomial modelling.
"""

from tissue_dge.model.normalization import (
    ave_log_cpm,
    calc_norm_factors,
    cpm,
    filter_by_expr,
)
from tissue_dge.model.glm import (
    GLMFit,
    adjusted_profile_loglik,
    fit_nb_glm,
    nb_deviance,
)
from tissue_dge.model.dispersion import (
    DispersionEstimate,
    estimate_disp,
)
from tissue_dge.model.quasi import (
    QLFit,
    glm_ql_fit,
    squeeze_var,
    trigamma_inverse,
)
from tissue_dge.model.fitter import (
    ModelFit,
    fit_models,
    fit_stratum,
)

__all__ = [
    # Normalization
    "ave_log_cpm",
    "calc_norm_factors",
    "cpm",
    "filter_by_expr",
    # GLM
    "GLMFit",
    "adjusted_profile_loglik",
    "fit_nb_glm",
    "nb_deviance",
    # Dispersion
    "DispersionEstimate",
    "estimate_disp",
    # Quasi-likelihood
    "QLFit",
    "glm_ql_fit",
    "squeeze_var",
    "trigamma_inverse",
    # Fitting
    "ModelFit",
    "fit_models",
    "fit_stratum",
]
