"""Contingency tables built from observation counts."""

from __future__ import annotations

import itertools
import logging
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

import numpy as np
import pandas as pd

from .errors import UnknownCategory
from .records import FIELD_ENUMS, Observation, levels_for


@dataclass(frozen=True)
class ContingencyTable:
    row_field: str
    col_field: str
    row_labels: tuple[str, ...]
    col_labels: tuple[str, ...]
    counts: np.ndarray

    def __post_init__(self) -> None:
        counts = np.array(self.counts, dtype=np.int64)
        if counts.shape != (len(self.row_labels), len(self.col_labels)):
            raise ValueError(
                f"counts shape {counts.shape} does not match labels "
                f"({len(self.row_labels)}, {len(self.col_labels)})"
            )
        counts.setflags(write=False)
        object.__setattr__(self, "counts", counts)

    @property
    def shape(self) -> tuple[int, int]:
        return self.counts.shape

    @property
    def total(self) -> int:
        return int(self.counts.sum())

    @property
    def row_totals(self) -> pd.Series:
        return pd.Series(self.counts.sum(axis=1), index=list(self.row_labels), name="row_total")

    @property
    def col_totals(self) -> pd.Series:
        return pd.Series(self.counts.sum(axis=0), index=list(self.col_labels), name="col_total")

    @property
    def label(self) -> str:
        return f"{self.row_field}_by_{self.col_field}"

    def cell(self, row: str, col: str) -> int:
        return int(self.counts[self.row_labels.index(row), self.col_labels.index(col)])

    def reorder(self, row_labels: Sequence[str] | None = None, col_labels: Sequence[str] | None = None) -> "ContingencyTable":
        rows = tuple(row_labels) if row_labels is not None else self.row_labels
        cols = tuple(col_labels) if col_labels is not None else self.col_labels
        if sorted(rows) != sorted(self.row_labels) or sorted(cols) != sorted(self.col_labels):
            raise ValueError("reorder requires a permutation of the existing labels")
        r_idx = [self.row_labels.index(x) for x in rows]
        c_idx = [self.col_labels.index(x) for x in cols]
        return ContingencyTable(self.row_field, self.col_field, rows, cols, self.counts[np.ix_(r_idx, c_idx)])

    def to_frame(self, margins: bool = False) -> pd.DataFrame:
        out = pd.DataFrame(self.counts, index=list(self.row_labels), columns=list(self.col_labels))
        if margins:
            out["total"] = out.sum(axis=1)
            out.loc["total"] = out.sum(axis=0)
        out.index.name = self.row_field
        out.columns.name = self.col_field
        return out

    def to_long(self) -> pd.DataFrame:
        """One row per cell with categorical label columns and the summed count."""
        rows, cols = zip(*itertools.product(self.row_labels, self.col_labels))
        out = pd.DataFrame(
            {
                self.row_field: pd.Categorical(rows, categories=list(self.row_labels)),
                self.col_field: pd.Categorical(cols, categories=list(self.col_labels)),
                "count": self.counts.reshape(-1),
            }
        )
        return out


def _key(obs: Observation, field: str, allowed: set[str], labels: Sequence[str], position: int) -> str:
    value = getattr(obs, field)
    label = value.value if isinstance(value, Enum) else value
    if label not in allowed:
        raise UnknownCategory(field, value, labels, position=position)
    return label


def build_contingency_table(
    observations: Iterable[Observation],
    row_field: str,
    col_field: str,
    row_labels: Sequence[str] | None = None,
    col_labels: Sequence[str] | None = None,
) -> ContingencyTable:
    rows = tuple(row_labels) if row_labels is not None else tuple(levels_for(row_field))
    cols = tuple(col_labels) if col_labels is not None else tuple(levels_for(col_field))
    row_set, col_set = set(rows), set(cols)

    sums: Counter[tuple[str, str]] = Counter()
    for position, obs in enumerate(observations):
        r = _key(obs, row_field, row_set, rows, position)
        c = _key(obs, col_field, col_set, cols, position)
        sums[(r, c)] += obs.count

    counts = np.zeros((len(rows), len(cols)), dtype=np.int64)
    r_pos = {label: i for i, label in enumerate(rows)}
    c_pos = {label: j for j, label in enumerate(cols)}
    for (r, c), total in sums.items():
        counts[r_pos[r], c_pos[c]] = total

    table = ContingencyTable(row_field, col_field, rows, cols, counts)
    logging.info("Built %s table: %sx%s cells, total=%s", table.label, len(rows), len(cols), table.total)
    logging.debug("%s counts\n%s", table.label, table.to_frame())
    return table


def event_by_vaccine_table(observations: Iterable[Observation]) -> ContingencyTable:
    return build_contingency_table(observations, "event_type", "vaccine_status")


def event_by_age_table(observations: Iterable[Observation]) -> ContingencyTable:
    return build_contingency_table(observations, "event_type", "age_band")


def merge_tables(left: ContingencyTable, right: ContingencyTable) -> ContingencyTable:
    """Combine tables built over disjoint partitions of the same observations."""
    same_layout = (
        left.row_field == right.row_field
        and left.col_field == right.col_field
        and left.row_labels == right.row_labels
        and left.col_labels == right.col_labels
    )
    if not same_layout:
        raise ValueError(f"cannot merge {left.label} with {right.label}: labels differ")
    return ContingencyTable(left.row_field, left.col_field, left.row_labels, left.col_labels, left.counts + right.counts)


def multiway_counts(observations: Iterable[Observation], fields: Sequence[str] | None = None) -> pd.DataFrame:
    """Summed counts for every combination of declared levels, zeros included."""
    fields = list(fields) if fields is not None else list(FIELD_ENUMS)
    allowed = {field: set(levels_for(field)) for field in fields}
    labels = {field: levels_for(field) for field in fields}

    sums: Counter[tuple[str, ...]] = Counter()
    for position, obs in enumerate(observations):
        key = tuple(_key(obs, field, allowed[field], labels[field], position) for field in fields)
        sums[key] += obs.count

    cells = list(itertools.product(*(labels[field] for field in fields)))
    out = pd.DataFrame(cells, columns=fields)
    out["count"] = np.array([sums.get(cell, 0) for cell in cells], dtype=np.int64)
    for field in fields:
        out[field] = pd.Categorical(out[field], categories=labels[field])
    return out
