"""
Error taxonomy for the ingestion and assignment core.

File-level and configuration errors are fatal to the call that raised them.
Row-level and rule-level failures are collected by the caller instead.
"""

from typing import Optional


class ResidualsError(Exception):
    """Base error carrying a stable error code for API responses."""
    error_code = "ERR_RESIDUALS"

    def __init__(self, message: str, error_code: Optional[str] = None):
        self.message = message
        if error_code:
            self.error_code = error_code
        super().__init__(message)


class ConfigurationError(ResidualsError):
    error_code = "ERR_CONFIGURATION"


class SchemaNotFoundError(ConfigurationError):
    """Registry lookup failed. Not retried."""
    error_code = "ERR_SCHEMA_NOT_FOUND"

    def __init__(self, processor_name: str):
        self.processor_name = processor_name
        super().__init__(f"No processor schema registered for '{processor_name}'")


class InvalidSchemaError(ConfigurationError):
    error_code = "ERR_INVALID_SCHEMA"


class FileReadError(ResidualsError):
    error_code = "ERR_FILE_UNREADABLE"


class UnknownProcessorError(ResidualsError):
    """No schema cleared the detection threshold and no filename hint applied."""
    error_code = "ERR_UNKNOWN_PROCESSOR"

    def __init__(self, file_name: str, best_score: float = 0.0):
        self.file_name = file_name
        self.best_score = best_score
        super().__init__(
            f"Could not detect processor type for {file_name} "
            f"(best header match {best_score:.0%})"
        )


class InvalidRequestError(ResidualsError):
    error_code = "ERR_INVALID_REQUEST"
