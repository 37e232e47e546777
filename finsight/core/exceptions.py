"""Core custom exceptions for the application."""


class FinSightError(Exception):
    """Base exception for every error raised by the analysis pipeline."""


class UnsupportedFormatError(FinSightError):
    """Raised when a file type is not accepted (checked before any parsing)."""


class EmptyDocumentError(FinSightError):
    """Raised when a tabular document has no extractable content."""


class DocumentReadError(FinSightError):
    """Raised when a document container cannot be decoded."""


class UploadLimitError(FinSightError):
    """Raised when an upload exceeds the configured count or size limits."""


class AuthenticationError(FinSightError):
    """Raised when no usable credential is available for the generation service."""


class GenerationUnavailableError(FinSightError):
    """Raised when the generation service fails or returns no content."""


class GenerationTimeoutError(GenerationUnavailableError):
    """Raised when the generation call exceeds its deadline."""


class MalformedResponseError(FinSightError):
    """Raised when generated content cannot be parsed or violates the schema contract."""


class SessionBusyError(FinSightError):
    """Raised when a request is issued while another one is still in flight."""


class NoReportError(FinSightError):
    """Raised when a conversational edit is requested before any analysis."""


class SessionNotFoundError(FinSightError):
    """Raised when a session id is unknown."""


class ConfigurationError(FinSightError):
    """Exception for configuration-related errors (e.g., missing prompt templates, invalid settings)."""
