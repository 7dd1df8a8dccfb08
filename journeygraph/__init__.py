"""journeygraph: step-graph engine for marketing automation journeys."""

from .contracts import (
    JourneyParams,
    JourneyStepMap,
    ReconcileResult,
    SearchParams,
    StepChildRef,
    StepMapEntry,
    StepStats,
    UpdateJourneyParams,
    parse_step_map,
)
from .db import ENTRANCE_TYPE, JourneyDB, get_journey_db
from .errors import JourneyError, NotFoundError, StepMapValidationError, TransactionFailure
from .journeys import JourneyRepository
from .progression import ProgressionLog
from .reconcile import StepMapReconciler

__version__ = "0.1.0"
__all__ = [
    "ENTRANCE_TYPE",
    "JourneyDB",
    "JourneyError",
    "JourneyParams",
    "JourneyRepository",
    "JourneyStepMap",
    "NotFoundError",
    "ProgressionLog",
    "ReconcileResult",
    "SearchParams",
    "StepChildRef",
    "StepMapEntry",
    "StepMapReconciler",
    "StepMapValidationError",
    "StepStats",
    "TransactionFailure",
    "UpdateJourneyParams",
    "get_journey_db",
    "parse_step_map",
]
