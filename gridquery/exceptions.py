"""Errors raised while compiling a datatable request into a query."""


class DatatableError(Exception):
    """Base class for every error raised by gridquery."""


class ConfigurationError(DatatableError, ValueError):
    """
    The engine was set up in a way that cannot produce a valid query.

    Raised for unknown filter logic tokens, dialects without JSON support,
    relations that cannot be resolved and overrides that do not fit the
    operation they name. These abort the current request.
    """


class RequestValidationError(DatatableError, ValueError):
    """The incoming request lacks required parameters or carries invalid ones."""
