"""Custom exceptions for the card OCR pipeline."""

class ApplicationError(Exception):
    """Base application error."""
    pass

class DetectionError(ApplicationError):
    """Base exception for detection-related errors."""
    pass

class ContractViolationError(DetectionError):
    """Malformed input handed to a pipeline stage (tensor lengths, grid shape, priors)."""
    pass

class ConfigError(ApplicationError):
    """Configuration-related errors."""
    pass

class ModelError(ApplicationError):
    """Model loading/inference errors."""
    pass

class UnrecoverableInferenceError(ModelError):
    """Inference failed on every attempt allowed by the retry policy."""

    def __init__(self, message: str, attempts: int = 0, last_error: Exception = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error
