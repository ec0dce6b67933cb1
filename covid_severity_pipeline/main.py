"""Main entrypoint for the COVID-19 severity pipeline."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path

import pandas as pd

from .analysis import AnalysisBundle, run_all_analyses
from .config import ASSUMPTIONS, CONFIG, REQUIRED_OUTPUT_FILES, ensure_output_dir, validate_config
from .linelist import LineListData, load_linelist
from .reporting import write_report


@dataclass
class PipelineRunResult:
    output_dir: Path
    generated_files: list[str]
    linelist: LineListData
    analyses: AnalysisBundle
    notes: list[str]


def _configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(message)s",
    )


def _echo_table(title: str, df: pd.DataFrame, max_rows: int = 30) -> None:
    print(f"\n--- {title} ({len(df)} rows) ---")
    print("(no rows)" if df.empty else df.to_string(index=False, max_rows=max_rows))


def _save_table(
    *,
    file_name: str,
    df: pd.DataFrame,
    output_dir: Path,
    index: bool = False,
    print_tables: bool = False,
    print_max_rows: int = 30,
) -> Path:
    out_path = output_dir / file_name
    df.to_csv(out_path, index=index)
    logging.info("Saved %s (%s rows)", file_name, len(df))
    if logging.getLogger().isEnabledFor(logging.DEBUG) and not df.empty:
        logging.debug("%s preview:\n%s", file_name, df.head(20).to_string(index=index))
    if print_tables:
        _echo_table(file_name, df.reset_index() if index else df, max_rows=print_max_rows)
    return out_path


def _missing_outputs(output_dir: Path) -> list[str]:
    return [name for name in REQUIRED_OUTPUT_FILES if not (output_dir / name).is_file()]


def run_pipeline(config: dict) -> PipelineRunResult:
    validate_config(config)
    output_dir = ensure_output_dir(config)
    print_tables = bool(config.get("print_tables", False))
    print_max_rows = int(config.get("print_table_max_rows", 30))

    logging.info("Starting severity pipeline. input=%s", config["input_path"])
    logging.info("Output directory: %s", output_dir)

    linelist = load_linelist(config["input_path"], config)
    analyses = run_all_analyses(linelist.store, config, cleaning_flow=linelist.cleaning_flow)

    event_vaccine = analyses.tables["event_type_by_vaccine_status"]
    event_age = analyses.tables["event_type_by_age_band"]
    output_map: list[tuple[str, pd.DataFrame, bool]] = [
        ("cleaning_flow.csv", linelist.cleaning_flow, False),
        ("table_event_by_vaccine.csv", event_vaccine.to_frame(margins=True), True),
        ("table_event_by_age.csv", event_age.to_frame(margins=True), True),
        ("expected_event_by_vaccine.csv", analyses.independence[event_vaccine.label].expected, True),
        ("expected_event_by_age.csv", analyses.independence[event_age.label].expected, True),
        ("chi_square_tests.csv", analyses.chi_square_summary(), False),
        ("model_coefficients.csv", analyses.coefficients, False),
        ("model_comparison.csv", analyses.comparison.table, False),
        ("odds_ratios.csv", analyses.odds_ratios, False),
    ]

    generated_files: list[str] = []
    for file_name, df, index in output_map:
        path = _save_table(
            file_name=file_name,
            df=df,
            output_dir=output_dir,
            index=index,
            print_tables=print_tables,
            print_max_rows=print_max_rows,
        )
        generated_files.append(path.name)

    notes = list(analyses.notes)
    report_path = write_report(
        output_dir=output_dir,
        assumptions=ASSUMPTIONS,
        bundle=analyses,
        generated_files=generated_files,
        notes=notes,
    )
    generated_files.append(report_path.name)
    for name in _missing_outputs(output_dir):
        notes.append(f"Missing expected output artifact: {name}")
        logging.warning("Expected output %s was not written", name)

    logging.info("Pipeline complete. Generated files:")
    for fp in sorted(generated_files):
        logging.info("- %s", fp)

    return PipelineRunResult(
        output_dir=output_dir,
        generated_files=sorted(generated_files),
        linelist=linelist,
        analyses=analyses,
        notes=notes,
    )


def main() -> PipelineRunResult:
    _configure_logging(CONFIG.get("log_level", "INFO"))
    try:
        return run_pipeline(CONFIG)
    except Exception:
        logging.exception("Severity pipeline failed")
        raise


if __name__ == "__main__":
    main()
