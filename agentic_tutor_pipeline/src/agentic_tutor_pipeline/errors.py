"""
Pipeline Error Taxonomy

Every failure a stage or the orchestrator can surface derives from
PipelineError. Each class carries the HTTP status and a stable tag that
the failure envelope reports to callers.
"""


class PipelineError(Exception):
    """Base class for all pipeline failures."""
    status_code = 500
    error_type = "pipeline_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_envelope(self) -> dict:
        return {
            "success": False,
            "error": self.message,
            "error_type": self.error_type,
        }


class AuthError(PipelineError):
    """Missing, malformed or rejected bearer token."""
    status_code = 401
    error_type = "auth_error"


class ValidationError(PipelineError):
    """Request field missing or of the wrong shape."""
    status_code = 400
    error_type = "validation_error"


class NotFoundError(PipelineError):
    """Referenced record does not exist or is not visible to the principal."""
    status_code = 404
    error_type = "not_found"


class OracleError(PipelineError):
    """Oracle returned no usable completion, timed out, or failed."""
    status_code = 502
    error_type = "oracle_error"


class ParseError(PipelineError):
    """Oracle output could not be decoded into the expected shape."""
    status_code = 502
    error_type = "parse_error"


class PersistenceError(PipelineError):
    """Store read or write failed."""
    status_code = 500
    error_type = "persistence_error"
