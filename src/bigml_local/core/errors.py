"""
Error taxonomy for local predictions.

Every error carries a human readable ``message`` and a machine readable
``code`` so callers can branch without parsing strings:

    try:
        model.predict({"petal length": "abc"})
    except ValidationError as e:
        logger.warning(f"{e.code}: {e.message}")
"""


class BigMLLocalError(Exception):
    """Base exception for local prediction errors."""

    def __init__(self, message: str, code: str = "BIGML_LOCAL_ERROR"):
        super().__init__(message)
        self.message = message
        self.code = code


class ApiError(BigMLLocalError):
    """Exception raised when the remote API fails after retries."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message, code="API_ERROR")
        self.status_code = status_code


class RateLimitError(ApiError):
    """Exception raised when the remote API rate limit is exceeded."""

    def __init__(self, message: str, retry_after: int = 60):
        super().__init__(message, status_code=429)
        self.code = "RATE_LIMITED"
        self.retry_after = retry_after


class ResourceIdError(BigMLLocalError, ValueError):
    """Exception raised for strings or objects that are not resource ids."""

    def __init__(self, message: str = "Wrong resource id"):
        super().__init__(message, code="WRONG_RESOURCE_ID")


class LoadError(BigMLLocalError):
    """The backing resource could not be turned into a local object."""

    def __init__(self, message: str):
        super().__init__(message, code="LOAD_ERROR")


class ValidationError(BigMLLocalError, ValueError):
    """Input data does not fit the model fields."""

    def __init__(self, message: str):
        super().__init__(message, code="VALIDATION_ERROR")


class UnsupportedOperationError(BigMLLocalError):
    """The operation is not defined for this kind of model."""

    def __init__(self, message: str):
        super().__init__(message, code="UNSUPPORTED_OPERATION")


class ConfigurationError(BigMLLocalError, ValueError):
    """Malformed prediction options (operating points, kinds, thresholds)."""

    def __init__(self, message: str):
        super().__init__(message, code="CONFIGURATION_ERROR")


class NotReadyError(BigMLLocalError):
    """A synchronous-only accessor was used before the resource loaded."""

    def __init__(self, message: str = "The local resource is not ready yet"):
        super().__init__(message, code="NOT_READY")
