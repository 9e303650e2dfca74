"""Tests for normalization, NB GLM fitting, dispersion and quasi-likelihood."""

import pytest
import numpy as np
from scipy.special import polygamma


def _two_group_design(n_per_group=3):
    X = np.zeros((2 * n_per_group, 2))
    X[:n_per_group, 0] = 1
    X[n_per_group:, 1] = 1
    return X


def _nb_counts(n_genes, n_samples, mean=50.0, dispersion=0.1):
    np.random.seed(42)
    mu = np.exp(np.random.normal(np.log(mean), 0.8, n_genes))[:, None] * np.ones(n_samples)
    r = 1.0 / dispersion
    return np.random.negative_binomial(r, r / (r + mu)).astype(np.float64)


class TestNormalization:
    """Test TMM factors and CPM helpers."""

    def test_tmm_geometric_mean_one(self):
        from tissue_dge.model import calc_norm_factors

        y = _nb_counts(500, 6)
        factors = calc_norm_factors(y)
        assert factors.shape == (6,)
        assert np.exp(np.mean(np.log(factors))) == pytest.approx(1.0)

    def test_scaled_libraries_need_no_correction(self):
        from tissue_dge.model import calc_norm_factors

        y = _nb_counts(300, 1)
        counts = np.hstack([y, 2 * y, 3 * y])
        np.testing.assert_allclose(calc_norm_factors(counts), np.ones(3))

    def test_composition_bias_corrected(self):
        from tissue_dge.model import calc_norm_factors

        y = _nb_counts(300, 2, mean=100.0)
        y[:, 1] = y[:, 0]
        # One highly expressed gene absorbs reads in sample 1
        y[0, 1] = y[:, 0].sum()
        factors = calc_norm_factors(y)
        lib = y.sum(axis=0)
        eff = lib * factors
        # Other genes are equally represented after normalization
        assert eff[0] == pytest.approx(eff[1], rel=0.02)

    def test_none_and_unknown_method(self):
        from tissue_dge.model import calc_norm_factors

        y = _nb_counts(50, 4)
        np.testing.assert_array_equal(calc_norm_factors(y, method="none"), np.ones(4))
        with pytest.raises(ValueError, match="Unknown normalization"):
            calc_norm_factors(y, method="RLE")

    def test_cpm_columns_sum_to_million(self):
        from tissue_dge.model import cpm

        y = _nb_counts(100, 4)
        np.testing.assert_allclose(cpm(y).sum(axis=0), 1e6)

    def test_ave_log_cpm_orders_abundance(self):
        from tissue_dge.model import ave_log_cpm

        y = np.array([[1.0, 2.0, 1.0], [100.0, 120.0, 90.0], [1000.0, 900.0, 1100.0]])
        abundance = ave_log_cpm(y)
        assert np.all(np.diff(abundance) > 0)

    def test_filter_by_expr(self):
        from tissue_dge.model import filter_by_expr

        y = _nb_counts(100, 6, mean=200.0)
        y[0] = 0
        y[1] = [0, 0, 0, 0, 0, 40]
        keep = filter_by_expr(y, group=["a", "a", "a", "b", "b", "b"])
        assert not keep[0]
        assert not keep[1]
        assert keep[2:].mean() > 0.9


class TestGLM:
    """Test the vectorized NB GLM."""

    def test_unit_deviance_zero_at_fit(self):
        from tissue_dge.model.glm import nb_deviance

        y = np.array([[0.0, 5.0, 10.0]])
        np.testing.assert_allclose(nb_deviance(y, y + 1e-300, np.array([[0.1]])), 0.0, atol=1e-10)

    def test_poisson_limit(self):
        from tissue_dge.model.glm import nb_deviance

        y = np.array([[3.0, 7.0]])
        mu = np.array([[5.0, 5.0]])
        poisson = 2 * np.sum(y * np.log(y / mu) - (y - mu))
        assert nb_deviance(y, mu, np.array([[0.0]]))[0] == pytest.approx(poisson)
        assert nb_deviance(y, mu, np.array([[1e-8]]))[0] == pytest.approx(poisson, rel=1e-5)

    def test_intercept_only_recovers_mean(self):
        from tissue_dge.model import fit_nb_glm

        y = _nb_counts(40, 6)
        X = np.ones((6, 1))
        fit = fit_nb_glm(y, X, offset=0.0, dispersion=0.1)

        assert fit.converged.all()
        np.testing.assert_allclose(fit.coefficients[:, 0], np.log(y.mean(axis=1)), rtol=1e-6)

    def test_group_means_with_offsets(self):
        from tissue_dge.model import fit_nb_glm

        y = np.array([[10.0, 20.0, 40.0, 80.0]])
        lib = np.array([1.0, 2.0, 1.0, 2.0])
        X = _two_group_design(2)
        fit = fit_nb_glm(y, X, offset=np.log(lib), dispersion=0.0)

        # Normalized counts are 10 in group A and 40 in group B
        np.testing.assert_allclose(np.exp(fit.coefficients[0]), [10.0, 40.0], rtol=1e-6)
        np.testing.assert_allclose(fit.fitted, y, rtol=1e-6)

    def test_all_zero_gene_is_finite(self):
        from tissue_dge.model import fit_nb_glm

        y = np.vstack([np.zeros(6), _nb_counts(1, 6)])
        fit = fit_nb_glm(y, _two_group_design(), offset=0.0, dispersion=0.1)
        assert np.all(np.isfinite(fit.deviance))
        assert fit.deviance[0] == pytest.approx(0.0, abs=1e-6)

    def test_diverged_start_still_reaches_optimum(self):
        from tissue_dge.model import fit_nb_glm
        from tissue_dge.model.glm import add_prior_count

        y = np.array([[0.0] * 4 + [70.0, 71.0, 72.0, 73.0]])
        lib = np.full(8, 1e4)
        y_aug, offset = add_prior_count(y, lib, prior_count=0.125)

        fit = fit_nb_glm(y_aug, _two_group_design(4), offset, 0.05, start=np.array([[-28.0, -5.4]]))

        assert fit.converged.all()
        expected = np.log([0.125, 71.625]) - offset[0]
        np.testing.assert_allclose(fit.coefficients[0], expected, atol=1e-4)

    def test_design_mismatch(self):
        from tissue_dge.model import fit_nb_glm

        with pytest.raises(ValueError, match="Design has"):
            fit_nb_glm(np.ones((2, 5)), np.ones((4, 1)), 0.0, 0.1)

    def test_prior_count_shrinks_towards_zero(self):
        from tissue_dge.model.glm import add_prior_count

        y = np.array([[0.0, 0.0, 8.0, 8.0]])
        lib = np.full(4, 100.0)
        y_aug, offset = add_prior_count(y, lib, prior_count=0.125)
        np.testing.assert_allclose(y_aug, y + 0.125)
        np.testing.assert_allclose(offset, np.log(100.25))


class TestDispersion:
    """Test dispersion estimation."""

    def test_maximize_interpolant_exact_for_parabola(self):
        from tissue_dge.model.dispersion import maximize_interpolant

        x = np.arange(-5.0, 6.0)
        y = -(x - 0.3) ** 2
        assert maximize_interpolant(x, y[None, :])[0] == pytest.approx(0.3)

    def test_maximize_interpolant_boundary(self):
        from tissue_dge.model.dispersion import maximize_interpolant

        x = np.arange(5.0)
        assert maximize_interpolant(x, x[None, :])[0] == 4.0

    def test_default_span(self):
        from tissue_dge.model.dispersion import default_span

        assert default_span(30) == 1.0
        assert default_span(200) == pytest.approx(0.25 + 0.75 * 0.5)

    def test_common_dispersion_recovered(self):
        from tissue_dge.model import ave_log_cpm, estimate_disp

        y = _nb_counts(1000, 8, mean=80.0, dispersion=0.1)
        X = _two_group_design(4)
        lib = y.sum(axis=0)
        est = estimate_disp(y, X, np.log(lib), ave_log_cpm(y, lib))

        assert 0.06 < est.common < 0.16
        assert est.trended.shape == (1000,)
        assert np.all(est.tagwise > 0)
        assert est.prior_n == pytest.approx(10.0 / 6)

    def test_zero_gene_takes_trend(self):
        from tissue_dge.model import ave_log_cpm, estimate_disp

        y = _nb_counts(100, 6)
        y[5] = 0
        X = _two_group_design(3)
        lib = y.sum(axis=0)
        est = estimate_disp(y, X, np.log(lib), ave_log_cpm(y, lib))

        assert est.tagwise[5] == est.trended[5]
        assert np.all(np.isfinite(est.trended))

    def test_no_residual_df(self):
        from tissue_dge.model import estimate_disp

        y = _nb_counts(20, 2)
        with pytest.raises(ValueError, match="residual degrees of freedom"):
            estimate_disp(y, np.eye(2), np.zeros(2), np.zeros(20))


class TestQuasiLikelihood:
    """Test variance moderation and the QL fit."""

    def test_trigamma_inverse(self):
        from tissue_dge.model import trigamma_inverse

        y = np.array([0.05, 0.5, 2.0, 10.0, 300.0])
        np.testing.assert_allclose(trigamma_inverse(polygamma(1, y)), y, rtol=1e-6)

    def test_trigamma_inverse_rejects_nonpositive(self):
        from tissue_dge.model import trigamma_inverse

        with pytest.raises(ValueError):
            trigamma_inverse(np.array([0.0]))

    def test_squeeze_constant_variances(self):
        from tissue_dge.model import squeeze_var

        result = squeeze_var(np.full(50, 2.0), 4.0)
        assert np.isinf(result.df_prior)
        np.testing.assert_allclose(result.var_post, result.var_post[0])

    def test_squeeze_pulls_towards_prior(self):
        from tissue_dge.model import squeeze_var

        np.random.seed(42)
        df = 4.0
        var = np.random.chisquare(df, 500) / df * np.exp(np.random.normal(0, 0.5, 500))
        result = squeeze_var(var, df)

        assert np.isfinite(result.df_prior)
        assert result.df_prior > 0
        assert np.ptp(result.var_post) < np.ptp(var)

    def test_residual_df_zero_patterns(self):
        from tissue_dge.model.quasi import residual_df

        X = _two_group_design(3)
        zero = np.zeros((3, 6), dtype=bool)
        zero[1, :3] = True  # group A all zero
        zero[2, :] = True   # every sample zero

        np.testing.assert_array_equal(residual_df(zero, X), [4.0, 2.0, 0.0])

    def test_ql_fit(self):
        from tissue_dge.model import ave_log_cpm, glm_ql_fit

        y = _nb_counts(200, 6)
        X = _two_group_design(3)
        lib = y.sum(axis=0)
        fit = glm_ql_fit(y, X, lib, 0.1, ave_log_cpm=ave_log_cpm(y, lib))

        assert fit.coefficients.shape == (200, 2)
        assert np.all(fit.s2_post > 0)
        assert np.all(fit.df_total <= fit.df_residual.sum())
        assert np.all(fit.df_total >= fit.df_residual)


class TestFitStratum:
    """Test the per-stratum model fit."""

    def test_fit_models(self, sample_dataset):
        from tissue_dge.model import fit_models
        from tissue_dge.stratify import filter_and_reshape

        wide = filter_and_reshape(sample_dataset, ["Normal"]).wide
        fits = fit_models(wide, ["LUAD", "LUSC"], {"LUAD": "Tumor", "LUSC": "Tumor"})

        assert list(fits) == ["LUAD", "LUSC"]
        fit = fits["LUAD"]
        assert fit.counts.shape == (150, 12)
        assert list(fit.coefficients.columns) == ["Tumor", "E-TLS", "SFL-TLS"]
        assert np.exp(np.mean(np.log(fit.norm_factors))) == pytest.approx(1.0)
        assert 0 < fit.dispersion.common < 1
        assert fit.summary()["n_samples"] == 12

    def test_filter_genes(self, sample_dataset):
        from tissue_dge.core.config import ModelConfig
        from tissue_dge.model import fit_models
        from tissue_dge.stratify import filter_and_reshape

        wide = filter_and_reshape(sample_dataset, ["Normal"]).wide
        config = ModelConfig(filter_genes=True, min_count=50, min_total_count=200)
        fits = fit_models(wide, ["LUAD"], {"LUAD": "Tumor"}, config=config)

        fit = fits["LUAD"]
        assert fit.counts.shape[0] == len(fit.genes)
        assert len(fit.genes) < 150
