"""Typed failures raised by the severity analysis pipeline."""

from __future__ import annotations

from typing import Any, Sequence


class AnalysisError(ValueError):
    """Base class for every failure the pipeline surfaces to its caller.

    ``partial_results`` is filled by ``run_all_analyses`` with whatever was
    computed before the failing stage.
    """

    partial_results: Any = None


class UnknownCategory(AnalysisError):
    def __init__(self, field: str, value: object, allowed: Sequence[object], *, position: int | None = None):
        self.field = field
        self.value = value
        self.allowed = tuple(allowed)
        self.position = position
        where = f" at row {position}" if position is not None else ""
        allowed_txt = ", ".join(str(getattr(x, "value", x)) for x in self.allowed)
        super().__init__(f"Unknown {field} value {value!r}{where}; expected one of: {allowed_txt}")


class DegenerateTableError(AnalysisError):
    def __init__(self, message: str, *, zero_rows: Sequence[str] = (), zero_cols: Sequence[str] = ()):
        self.zero_rows = tuple(zero_rows)
        self.zero_cols = tuple(zero_cols)
        super().__init__(message)


class NegativeCountError(AnalysisError):
    def __init__(self, count: object, *, position: int | None = None, record: object = None):
        self.count = count
        self.position = position
        self.record = record
        where = f" at row {position}" if position is not None else ""
        super().__init__(f"Negative count {count!r}{where}; counts must be >= 0")


class InvalidRecordError(AnalysisError):
    def __init__(self, field: str, value: object, *, position: int | None = None, reason: str = ""):
        self.field = field
        self.value = value
        self.position = position
        where = f" at row {position}" if position is not None else ""
        detail = f" ({reason})" if reason else ""
        super().__init__(f"Invalid {field} value {value!r}{where}{detail}")


class ConvergenceError(AnalysisError):
    def __init__(self, label: str, *, iterations: int, deviance_change: float):
        self.label = label
        self.iterations = iterations
        self.deviance_change = deviance_change
        super().__init__(
            f"{label}: IRLS did not converge after {iterations} iterations "
            f"(last relative deviance change {deviance_change:.3g})"
        )


class RankDeficiencyError(AnalysisError):
    def __init__(self, label: str, *, rank: int, n_columns: int, column_names: Sequence[str] = ()):
        self.label = label
        self.rank = rank
        self.n_columns = n_columns
        self.column_names = tuple(column_names)
        super().__init__(
            f"{label}: design matrix has rank {rank} < {n_columns} columns "
            f"({', '.join(self.column_names)})"
        )
