"""Error taxonomy shared by the planner, executor, exporter, ledger and scheduler."""

from __future__ import annotations


class ReportEngineError(Exception):
    """Base class for reporting failures that carry a human-readable message."""


class DefinitionError(ReportEngineError):
    """A report definition cannot be turned into a query plan."""


class UnknownFieldError(DefinitionError):
    """An entity, field or relation is not part of the catalog."""


class UnsupportedOperatorError(DefinitionError):
    """A filter uses an operator outside the supported set."""


class MalformedFilterValueError(DefinitionError):
    """A filter value has the wrong shape for its operator."""


class ExecutionError(ReportEngineError):
    """The data store rejected or failed a report query."""


class ExportError(ReportEngineError):
    """A result set could not be serialized or written to storage."""


class DeliveryError(ReportEngineError):
    """A delivery channel could not hand off an exported report."""


class LedgerStateError(ReportEngineError):
    """An execution record was finalized more than once."""


class ReportNotFoundError(ReportEngineError):
    """Raised when a report cannot be located."""


class ScheduleNotFoundError(ReportEngineError):
    """Raised when a report schedule cannot be located."""


class ExecutionNotFoundError(ReportEngineError):
    """Raised when an execution record cannot be located."""


__all__ = [
    "DefinitionError",
    "DeliveryError",
    "ExecutionError",
    "ExecutionNotFoundError",
    "ExportError",
    "LedgerStateError",
    "MalformedFilterValueError",
    "ReportEngineError",
    "ReportNotFoundError",
    "ScheduleNotFoundError",
    "UnknownFieldError",
    "UnsupportedOperatorError",
]
