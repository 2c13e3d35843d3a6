"""Exception types raised by the report pipeline."""


class SuperSpeedersError(RuntimeError):
    """Base class for pipeline failures."""


class DownloadError(SuperSpeedersError):
    """Raised when the raw dataset cannot be fetched after all retries."""


class ConversionError(SuperSpeedersError):
    """Raised when the CSV cannot be converted to the columnar dataset."""


class DatasetError(SuperSpeedersError):
    """Raised when a columnar dataset cannot be opened."""


class QueryError(SuperSpeedersError):
    """Raised when a query plan is built or executed incorrectly."""
