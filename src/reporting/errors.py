"""Error taxonomy for report definition, compilation, export and execution."""


class ReportingError(Exception):
    """Base class for reporting failures."""


class ReportConfigError(ReportingError):
    """The report configuration is invalid. Execution is never started."""


class QueryCompileError(ReportConfigError):
    """The configuration cannot be turned into a query."""


class ExportError(ReportingError):
    """A codec failed while rendering rows. Partial output must be discarded."""


class ExportCancelledError(ExportError):
    """A streaming export observed its cancellation signal and stopped."""


class ExecutionStateError(ReportingError):
    """Illegal lifecycle transition, e.g. cancelling a finished execution."""


class ReportNotFoundError(ReportingError, LookupError):
    """A definition, schedule, execution or artifact does not exist."""
