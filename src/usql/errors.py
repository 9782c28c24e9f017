"""Exception taxonomy for usql.

Every error raised by providers derives from USQLError. Engine errors are
chained as ``__cause__`` so callers can inspect the driver's original message.
"""


class USQLError(Exception):
    """Base class for all usql errors."""


class ConnectionFailure(USQLError):
    """Raised when a connection cannot be opened or authenticated."""


class SchemaIntrospectionFailure(USQLError):
    """Raised when PRAGMA or INFORMATION_SCHEMA output cannot be read."""


class SchemaModificationFailed(USQLError):
    """Raised when a DDL statement or rebuild transaction fails.

    The transaction has always been rolled back before this is raised.
    """


class StatementFailed(USQLError):
    """Raised when a single data statement or ad-hoc query fails."""


class TableNotFound(USQLError):
    """Raised when an operation targets a table that does not exist."""


class ColumnNotFound(USQLError):
    """Raised when an operation targets a column that does not exist."""


class NoPrimaryKey(USQLError):
    """Raised when an operation needs a primary key and none is available."""


class CannotDeleteLastColumn(USQLError):
    """Raised when deleting the only column of a table."""


class DuplicateValueViolation(USQLError):
    """Raised when promoting a column holding duplicate values to primary key."""


class UnresolvableReference(USQLError):
    """Raised when an asset reference has no stable logical path."""


class EmptyRowMatch(USQLError):
    """Raised when a row delete has no usable predicate."""


class InvalidNameError(USQLError, ValueError):
    """Raised when a table or column name is invalid."""
