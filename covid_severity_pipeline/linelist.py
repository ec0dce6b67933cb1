"""Line-listing ingestion: raw labels to typed observations plus a cleaning flow."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pandas as pd

from .categories import is_excluded_age_label, parse_label
from .errors import InvalidRecordError, NegativeCountError
from .records import FIELD_ENUMS, Observation, RecordStore


@dataclass
class LineListData:
    cleaning_flow: pd.DataFrame
    raw_df: pd.DataFrame
    store: RecordStore


def study_window(config: dict) -> tuple[dt.date, dt.date]:
    start = pd.Timestamp(config["study_start"]).date()
    end = pd.Timestamp(config["study_end"]).date()
    return start, end


def _standardize_columns(raw_df: pd.DataFrame, config: dict) -> pd.DataFrame:
    column_map = dict(config["input_columns"])
    missing = [src for src in column_map.values() if src not in raw_df.columns]
    if missing:
        raise ValueError(f"Line-listing is missing required columns: {', '.join(missing)}")
    renamed = raw_df.rename(columns={src: dst for dst, src in column_map.items()})
    return renamed[list(column_map)].copy()


def _parse_categorical(series: pd.Series, field: str) -> list:
    resolved: dict[object, object] = {}
    out = []
    for position, raw in series.items():
        key = None if pd.isna(raw) else raw
        if key not in resolved:
            resolved[key] = parse_label(field, raw, position=int(position))
        out.append(resolved[key])
    return out


def _parse_dates(series: pd.Series, date_format: str) -> pd.Series:
    parsed = pd.to_datetime(series, format=date_format, errors="coerce")
    bad = parsed.isna()
    if bad.any():
        position = int(bad[bad].index[0])
        raise InvalidRecordError("date", series.loc[position], position=position, reason=f"expected {date_format}")
    return parsed


def _parse_counts(series: pd.Series) -> pd.Series:
    numeric = pd.to_numeric(series, errors="coerce").astype(float)
    bad = numeric.isna() | ~np.isfinite(numeric) | (numeric != np.floor(numeric))
    if bad.any():
        position = int(bad[bad].index[0])
        raise InvalidRecordError("count", series.loc[position], position=position, reason="expected an integer")
    negative = numeric < 0
    if negative.any():
        position = int(negative[negative].index[0])
        raise NegativeCountError(int(numeric.loc[position]), position=position)
    return numeric.astype("int64")


def _flow_row(step: str, df_or_store) -> dict[str, object]:
    if isinstance(df_or_store, RecordStore):
        return {"step": step, "n_rows": len(df_or_store), "n_events": int(df_or_store.total_count)}
    counts = pd.to_numeric(df_or_store["count"], errors="coerce").astype(float)
    # unparseable or infinite counts are rejected later with their row position
    counts = counts.where(np.isfinite(counts), 0)
    return {"step": step, "n_rows": int(len(df_or_store)), "n_events": int(counts.sum())}


def prepare_linelist(raw_df: pd.DataFrame, config: dict) -> LineListData:
    df = _standardize_columns(raw_df, config).reset_index(drop=True)
    flow = [_flow_row("raw_rows", df)]

    excluded_mask = df["age_band"].map(is_excluded_age_label).astype(bool)
    if excluded_mask.any():
        logging.info("Dropping %s rows in age bands below the analytic floor", int(excluded_mask.sum()))
    df = df.loc[~excluded_mask]
    flow.append(_flow_row("after_age_band_exclusion", df))

    parsed = {field: _parse_categorical(df[field], field) for field in FIELD_ENUMS}
    dates = _parse_dates(df["date"], config.get("date_format", "%d/%m/%Y"))
    counts = _parse_counts(df["count"])

    observations = [
        Observation(
            sex=sex,
            age_band=age_band,
            date=date.date(),
            event_type=event_type,
            vaccine_status=vaccine_status,
            count=int(count),
        )
        for sex, age_band, date, event_type, vaccine_status, count in zip(
            parsed["sex"],
            parsed["age_band"],
            dates,
            parsed["event_type"],
            parsed["vaccine_status"],
            counts,
        )
    ]
    start, end = study_window(config)
    store = RecordStore(observations).within_window(start, end)
    flow.append(_flow_row("within_study_window", store))

    cleaning_flow = pd.DataFrame(flow)
    logging.info(
        "Line-listing prepared: %s analytic rows, %s events",
        len(store),
        store.total_count,
    )
    return LineListData(cleaning_flow=cleaning_flow, raw_df=raw_df, store=store)


def load_linelist(path: str | Path, config: dict) -> LineListData:
    logging.info("Reading line-listing: %s", path)
    raw_df = pd.read_csv(path, encoding=config.get("input_encoding", "utf-8"), dtype=str)
    logging.info("Read %s rows", len(raw_df))
    return prepare_linelist(raw_df, config)
