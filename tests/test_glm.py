"""
Tests for design encoding and IRLS fitting.
"""
from __future__ import annotations

import numpy as np
import pandas as pd
import pytest
import statsmodels.api as sm

from covid_severity_pipeline.aggregation import ContingencyTable
from covid_severity_pipeline.analysis import fit_loglinear_table
from covid_severity_pipeline.config import CONFIG
from covid_severity_pipeline.errors import ConvergenceError, RankDeficiencyError, UnknownCategory
from covid_severity_pipeline.expansion import covariate_pattern_weights, expand_observations
from covid_severity_pipeline.glm import Factor, build_design, fit_frame, fit_glm, make_family
from covid_severity_pipeline.independence import chi_square_test
from covid_severity_pipeline.records import levels_for

SM_LINKS = {
    "logit": sm.families.links.Logit,
    "probit": sm.families.links.Probit,
    "cloglog": sm.families.links.CLogLog,
}


@pytest.fixture
def six_cell_frame() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "y": [10, 20, 30, 5, 15, 25],
            "a": ["a1", "a2", "a3", "a1", "a2", "a3"],
            "b": ["b1", "b1", "b2", "b2", "b3", "b3"],
        }
    )


SIX_CELL_FACTORS = [Factor("a", ("a1", "a2", "a3"), "a1"), Factor("b", ("b1", "b2", "b3"), "b1")]
BINARY_FACTORS = [Factor("group", ("a", "b", "c"), "a"), Factor("exposed", ("no", "yes"), "no")]


# ---------------------------------------------------------------------------
# Design encoding


class TestBuildDesign:
    def test_treatment_coding(self, six_cell_frame):
        design = build_design(six_cell_frame, SIX_CELL_FACTORS)

        assert design.column_names == ("Intercept", "a[T.a2]", "a[T.a3]", "b[T.b2]", "b[T.b3]")
        assert design.shape == (6, 5)
        np.testing.assert_array_equal(design.matrix[:, 1], [0, 1, 0, 0, 1, 0])

    def test_unknown_level(self, six_cell_frame):
        frame = six_cell_frame.copy()
        frame.loc[4, "a"] = "a9"
        with pytest.raises(UnknownCategory) as excinfo:
            build_design(frame, SIX_CELL_FACTORS)
        assert excinfo.value.position == 4

    def test_absent_level_dropped(self, six_cell_frame):
        factors = [Factor("a", ("a1", "a2", "a3", "a4"), "a1")]

        design = build_design(six_cell_frame, factors)

        assert "a[T.a4]" not in design.column_names
        assert design.dropped_levels == {"a": ("a4",)}

    def test_reference_must_be_a_level(self):
        with pytest.raises(ValueError):
            Factor("a", ("a1", "a2"), "a3")

    def test_absent_reference_falls_back_to_first_present_level(self, six_cell_frame):
        frame = six_cell_frame.loc[six_cell_frame["a"] != "a1"]

        design = build_design(frame, SIX_CELL_FACTORS)

        assert design.column_names == ("Intercept", "a[T.a3]", "b[T.b2]", "b[T.b3]")
        assert design.reference_changes == {"a": ("a1", "a2")}
        assert design.dropped_levels == {"a": ("a1",)}

    def test_absent_reference_still_fits(self, six_cell_frame):
        frame = six_cell_frame.loc[six_cell_frame["b"] != "b1"]

        model = fit_frame(frame, "y", SIX_CELL_FACTORS, "poisson", "log")

        assert model.rank == len(model.coefficients)
        assert model.reference_changes == {"b": ("b1", "b2")}
        assert "b[T.b2]" not in model.terms


# ---------------------------------------------------------------------------
# Poisson


class TestPoissonFit:
    def test_six_cell_scenario(self, six_cell_frame):
        model = fit_frame(six_cell_frame, "y", SIX_CELL_FACTORS, "poisson", "log")

        assert model.iterations <= 25
        assert np.all(np.isfinite(model.standard_errors))
        assert len(model.coefficients) == 5
        assert model.df_resid == 1
        assert model.rank == 5

    def test_fitted_means_sum_to_observed_total(self, six_cell_frame):
        model = fit_frame(six_cell_frame, "y", SIX_CELL_FACTORS, "poisson", "log")
        assert model.fitted_values.sum() == pytest.approx(six_cell_frame["y"].sum(), rel=1e-6)

    def test_matches_statsmodels(self, six_cell_frame):
        design = build_design(six_cell_frame, SIX_CELL_FACTORS)
        model = fit_glm(six_cell_frame["y"], design, "poisson", "log")
        ref = sm.GLM(six_cell_frame["y"].to_numpy(float), design.matrix, family=sm.families.Poisson()).fit()

        np.testing.assert_allclose(model.coefficients.to_numpy(), ref.params, atol=1e-5)
        np.testing.assert_allclose(model.standard_errors.to_numpy(), ref.bse, rtol=1e-4)
        assert model.deviance == pytest.approx(ref.deviance, abs=1e-6)
        assert model.log_likelihood == pytest.approx(ref.llf, abs=1e-6)
        assert model.aic == pytest.approx(ref.aic, abs=1e-6)

    def test_loglinear_independence_reproduces_chi_square(self):
        counts = np.array([[100, 80, 120], [50, 60, 40], [10, 12, 8], [5, 8, 2]])
        table = ContingencyTable(
            "event_type", "vaccine_status", tuple(levels_for("event_type")), tuple(levels_for("vaccine_status")), counts
        )

        model = fit_loglinear_table(table, CONFIG)
        result = chi_square_test(table)

        assert model.pearson_chi2 == pytest.approx(result.statistic, rel=1e-6)
        assert model.deviance == pytest.approx(result.g_statistic, rel=1e-6)
        assert model.df_resid == result.df

    def test_not_converging_within_budget(self, six_cell_frame):
        with pytest.raises(ConvergenceError) as excinfo:
            fit_frame(six_cell_frame, "y", SIX_CELL_FACTORS, "poisson", "log", max_iter=1)
        assert excinfo.value.iterations == 1

    def test_iteration_budget_is_exact(self, six_cell_frame):
        model = fit_frame(six_cell_frame, "y", SIX_CELL_FACTORS, "poisson", "log")

        again = fit_frame(six_cell_frame, "y", SIX_CELL_FACTORS, "poisson", "log", max_iter=model.iterations)
        assert again.iterations == model.iterations
        with pytest.raises(ConvergenceError):
            fit_frame(six_cell_frame, "y", SIX_CELL_FACTORS, "poisson", "log", max_iter=model.iterations - 1)

    def test_rank_deficient_design(self):
        frame = pd.DataFrame(
            {
                "y": [3, 5, 2, 7, 4, 6, 1, 8],
                "a": ["u", "v"] * 4,
                "b": ["p", "q"] * 4,
            }
        )
        factors = [Factor("a", ("u", "v"), "u"), Factor("b", ("p", "q"), "p")]

        with pytest.raises(RankDeficiencyError) as excinfo:
            fit_frame(frame, "y", factors, "poisson", "log")

        assert excinfo.value.rank == 2
        assert excinfo.value.n_columns == 3

    def test_negative_response_rejected(self, six_cell_frame):
        frame = six_cell_frame.copy()
        frame.loc[0, "y"] = -1
        with pytest.raises(ValueError):
            fit_frame(frame, "y", SIX_CELL_FACTORS, "poisson", "log")

    def test_rate_ratio_effect_type(self, six_cell_frame):
        table = fit_frame(six_cell_frame, "y", SIX_CELL_FACTORS, "poisson", "log").coefficient_table()
        assert set(table["effect_type"]) == {"RR"}
        np.testing.assert_allclose(table["exp_coef"], np.exp(table["coef"]))


# ---------------------------------------------------------------------------
# Binomial


class TestBinomialFit:
    @pytest.mark.parametrize("link", ["logit", "probit", "cloglog"])
    def test_matches_statsmodels(self, binary_frame, link):
        design = build_design(binary_frame, BINARY_FACTORS)
        model = fit_glm(binary_frame["y"], design, "binomial", link)
        ref = sm.GLM(
            binary_frame["y"].to_numpy(float),
            design.matrix,
            family=sm.families.Binomial(link=SM_LINKS[link]()),
        ).fit()

        np.testing.assert_allclose(model.coefficients.to_numpy(), ref.params, atol=1e-4)
        np.testing.assert_allclose(model.standard_errors.to_numpy(), ref.bse, rtol=1e-3)
        assert model.log_likelihood == pytest.approx(ref.llf, abs=1e-4)
        assert model.deviance == pytest.approx(ref.deviance, abs=1e-4)
        assert model.null_deviance == pytest.approx(ref.null_deviance, abs=1e-6)

    def test_link_signs_agree(self):
        rng = np.random.RandomState(7)
        n = 5000
        exposed = rng.choice(["no", "yes"], size=n)
        p = 1.0 / (1.0 + np.exp(-(-1.0 + 1.0 * (exposed == "yes"))))
        frame = pd.DataFrame({"exposed": exposed, "y": rng.binomial(1, p)})
        factors = [Factor("exposed", ("no", "yes"), "no")]

        coefs = [
            fit_frame(frame, "y", factors, "binomial", link).coefficients["exposed[T.yes]"]
            for link in ("logit", "probit", "cloglog")
        ]

        assert all(c > 0 for c in coefs)

    def test_frequency_weights_match_expansion(self, mock_data):
        factors = [
            Factor("age_band", tuple(levels_for("age_band")), "30-39"),
            Factor("vaccine_status", tuple(levels_for("vaccine_status")), "none"),
            Factor("sex", tuple(levels_for("sex")), "male"),
        ]
        expanded = expand_observations(mock_data.store).to_frame()
        weighted = covariate_pattern_weights(mock_data.store)

        full = fit_frame(expanded, "severe", factors, "binomial", "logit")
        collapsed = fit_frame(weighted, "severe", factors, "binomial", "logit", weight_column="weight")

        np.testing.assert_allclose(full.coefficients.to_numpy(), collapsed.coefficients.to_numpy(), rtol=1e-6, atol=1e-8)
        np.testing.assert_allclose(full.standard_errors.to_numpy(), collapsed.standard_errors.to_numpy(), rtol=1e-6)
        assert full.aic == pytest.approx(collapsed.aic, rel=1e-8)
        assert full.nobs == collapsed.nobs

    def test_perfect_separation_raises(self):
        frame = pd.DataFrame({"exposed": ["no"] * 20 + ["yes"] * 20, "y": [0] * 20 + [1] * 20})
        factors = [Factor("exposed", ("no", "yes"), "no")]

        with pytest.raises(ConvergenceError):
            fit_frame(frame, "y", factors, "binomial", "logit")

    def test_response_outside_unit_interval(self, binary_frame):
        frame = binary_frame.copy()
        frame.loc[0, "y"] = 2
        with pytest.raises(ValueError):
            fit_frame(frame, "y", BINARY_FACTORS, "binomial", "logit")

    def test_effect_types_by_link(self, binary_frame):
        logit = fit_frame(binary_frame, "y", BINARY_FACTORS, "binomial", "logit").coefficient_table()
        probit = fit_frame(binary_frame, "y", BINARY_FACTORS, "binomial", "probit").coefficient_table()

        assert set(logit["effect_type"]) == {"OR"}
        assert probit["exp_coef"].isna().all()

    def test_results_are_read_only(self, binary_frame):
        model = fit_frame(binary_frame, "y", BINARY_FACTORS, "binomial", "logit")
        with pytest.raises(ValueError):
            model.fitted_values[0] = 0.5
        with pytest.raises(AttributeError):
            model.aic = 0.0


@pytest.mark.parametrize(
    "family, link",
    [("gaussian", "identity"), ("poisson", "logit"), ("binomial", "log")],
)
def test_unsupported_family_or_link(family, link) -> None:
    with pytest.raises(ValueError):
        make_family(family, link)
