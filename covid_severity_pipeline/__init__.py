"""COVID-19 severity by vaccination status: contingency tables, chi-square tests and GLMs."""

from .analysis import AnalysisBundle, run_all_analyses
from .records import AgeBand, EventType, Observation, RecordStore, Sex, VaccineStatus

__version__ = "0.1.0"
