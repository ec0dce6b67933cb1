"""
End-to-end tests for the analysis bundle and the file-writing pipeline.
"""
from __future__ import annotations

import dataclasses

import numpy as np
import pandas as pd
import pytest

from covid_severity_pipeline.analysis import (
    fit_severity_models,
    odds_ratio_table,
    run_all_analyses,
)
from covid_severity_pipeline.config import CONFIG, REQUIRED_OUTPUT_FILES, validate_config
from covid_severity_pipeline.errors import DegenerateTableError
from covid_severity_pipeline.expansion import expand_observations
from covid_severity_pipeline.main import run_pipeline
from covid_severity_pipeline.records import RecordStore, Sex, VaccineStatus


@pytest.fixture(scope="module")
def bundle(mock_data):
    return run_all_analyses(mock_data.store, CONFIG, cleaning_flow=mock_data.cleaning_flow)


# ---------------------------------------------------------------------------
# run_all_analyses


class TestRunAllAnalyses:
    def test_tables_conserve_total(self, bundle, mock_data):
        total = mock_data.store.total_count
        for table in bundle.tables.values():
            assert table.total == total
        assert bundle.n_expanded == total

    def test_model_inventory(self, bundle):
        assert set(bundle.tables) == {"event_type_by_vaccine_status", "event_type_by_age_band"}
        assert set(bundle.poisson_models) == {"event_type_by_vaccine_status", "event_type_by_age_band", "multiway"}
        assert set(bundle.severity_models) == {"logit", "probit", "cloglog", "age_trend"}
        assert len(bundle.comparison.table) == len(bundle.models)

    def test_poisson_fits_reproduce_totals(self, bundle, mock_data):
        for model in bundle.poisson_models.values():
            assert model.fitted_values.sum() == pytest.approx(mock_data.store.total_count, rel=1e-6)

    def test_vaccination_lowers_severity_odds(self, bundle):
        ors = bundle.odds_ratios.set_index("term")
        logit_rows = bundle.odds_ratios.loc[bundle.odds_ratios["model"] == "binomial_logit"].set_index("term")

        assert logit_rows.loc["vaccine_status[T.full]", "odds_ratio"] < 1.0
        assert logit_rows.loc["vaccine_status[T.full]", "ci_high"] < 1.0
        assert "age_index" in ors.index

    def test_severity_rises_with_age(self, bundle):
        trend = bundle.severity_models["age_trend"]
        assert trend.coefficients["age_index"] > 0
        logit = bundle.severity_models["logit"]
        assert logit.coefficients["age_band[T.80+]"] > logit.coefficients["age_band[T.40-49]"]

    def test_chi_square_summary(self, bundle):
        summary = bundle.chi_square_summary()
        assert list(summary["table"]) == ["event_type_by_vaccine_status", "event_type_by_age_band"]
        assert (summary["df"] == [6, 15]).all()

    def test_coefficients_cover_every_model(self, bundle):
        assert set(bundle.coefficients["model"]) == {m.label for m in bundle.models}

    def test_odds_ratios_need_logit(self, bundle):
        with pytest.raises(ValueError):
            odds_ratio_table(bundle.severity_models["probit"])

    def test_partial_results_on_failure(self, full_grid_store, config):
        observations = [
            dataclasses.replace(obs, count=0) if obs.vaccine_status is VaccineStatus.PARTIAL else obs
            for obs in full_grid_store
        ]

        with pytest.raises(DegenerateTableError) as excinfo:
            run_all_analyses(RecordStore(observations), config)

        partial = excinfo.value.partial_results
        assert partial is not None
        assert "event_type_by_vaccine_status" in partial.tables
        assert partial.independence == {}
        assert partial.severity_models == {}
        assert excinfo.value.zero_cols == ("partial",)

    def test_absent_reference_sex_uses_next_level(self, full_grid_store, config):
        store = RecordStore(obs for obs in full_grid_store if obs.sex is not Sex.MALE)

        result = run_all_analyses(store, config)

        assert result.poisson_models["multiway"].reference_changes == {"sex": ("male", "female")}
        logit = result.severity_models["logit"]
        assert logit.reference_changes == {"sex": ("male", "female")}
        assert "sex[T.unknown]" in logit.terms
        assert "sex[T.female]" not in logit.terms
        assert any("reference 'male' has no observations" in note for note in result.notes)

    def test_collapsed_patterns_match_expanded_rows(self, mock_data, config, bundle):
        collapsed = run_all_analyses(mock_data.store, {**config, "collapse_covariate_patterns": True})

        assert collapsed.n_expanded == bundle.n_expanded
        for key, model in bundle.severity_models.items():
            other = collapsed.severity_models[key]
            np.testing.assert_allclose(other.coefficients, model.coefficients, rtol=1e-6, atol=1e-8)
            assert other.aic == pytest.approx(model.aic, rel=1e-8)
            assert other.nobs == model.nobs

    def test_parallel_link_fits_match_serial(self, mock_data, config):
        expanded = expand_observations(mock_data.store).to_frame()

        serial = fit_severity_models(expanded, {**config, "parallel_link_fits": False})
        parallel = fit_severity_models(expanded, {**config, "parallel_link_fits": True})

        assert list(serial) == list(parallel) == ["logit", "probit", "cloglog"]
        for link in serial:
            np.testing.assert_allclose(serial[link].coefficients, parallel[link].coefficients)
            assert serial[link].aic == parallel[link].aic


# ---------------------------------------------------------------------------
# run_pipeline


class TestRunPipeline:
    def test_writes_every_artifact(self, mock_linelist, config, tmp_path, capsys):
        input_path = tmp_path / "linelist.csv"
        mock_linelist.to_csv(input_path, index=False)

        result = run_pipeline({**config, "input_path": str(input_path), "print_tables": True, "print_table_max_rows": 5})

        for file_name in REQUIRED_OUTPUT_FILES:
            assert (result.output_dir / file_name).is_file(), file_name
        assert not any(note.startswith("Missing expected output") for note in result.notes)

        comparison = pd.read_csv(result.output_dir / "model_comparison.csv")
        assert {"model", "aic", "aic_rank", "dispersion", "dispersion_flag"} <= set(comparison.columns)
        flow = pd.read_csv(result.output_dir / "cleaning_flow.csv")
        assert flow["n_events"].iloc[-1] == result.linelist.store.total_count

        report = (result.output_dir / "REPORT.md").read_text(encoding="utf-8")
        assert "## Model Comparison" in report
        assert "--- odds_ratios.csv" in capsys.readouterr().out

    def test_missing_input_rejected(self, config, tmp_path):
        with pytest.raises(ValueError):
            validate_config({**config, "input_path": str(tmp_path / "absent.csv")})

    def test_empty_input_path_rejected(self, config):
        with pytest.raises(ValueError):
            validate_config({**config, "input_path": ""})

    def test_unknown_link_rejected(self, config, tmp_path):
        input_path = tmp_path / "linelist.csv"
        input_path.write_text("sex\n", encoding="utf-8")
        with pytest.raises(ValueError):
            validate_config({**config, "input_path": str(input_path), "binary_links": ["loglog"]})
