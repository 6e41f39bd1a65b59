"""Conversion error kinds. Each carries a stable code for API clients."""


class ConversionError(Exception):
    code = "CONVERSION_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict:
        return {"error_code": self.code, "message": self.message}


class UnsupportedFormat(ConversionError):
    code = "UNSUPPORTED_FORMAT"


class FileTooLarge(ConversionError):
    code = "FILE_TOO_LARGE"


class InvalidOption(ConversionError):
    code = "INVALID_OPTION"


class EngineInitFailure(ConversionError):
    code = "ENGINE_INIT_FAILURE"


class EngineRunFailure(ConversionError):
    code = "ENGINE_RUN_FAILURE"


class IOFailure(ConversionError):
    code = "IO_FAILURE"


class JobInProgress(ConversionError):
    """Raised when a job is submitted while another is loading or running."""

    code = "JOB_IN_PROGRESS"


class JobCancelled(ConversionError):
    """Result of a job that was reset before the engine started on it."""

    code = "JOB_CANCELLED"
