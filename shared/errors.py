"""
Shared error handling for the personalization engine.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import session_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""
    
    session_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class PersonalizationError(Exception):
    """Base exception for the personalization engine."""
    
    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)
    
    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            session_id=session_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ConfigurationError(PersonalizationError):
    """Invalid engine configuration."""
    
    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class NetworkFailure(PersonalizationError):
    """Remote call failed after retries or returned an unusable response."""
    
    def __init__(self, service: str, message: str = "Network failure", details: Optional[Dict[str, Any]] = None):
        super().__init__("NETWORK_FAILURE", f"{service}: {message}", details)


class ChallengeResponseError(NetworkFailure):
    """Remote service answered with a challenge-style status worth retrying."""
    
    def __init__(self, service: str, status_code: int):
        super().__init__(
            service,
            f"challenge status {status_code}",
            details={"status_code": status_code}
        )
        self.status_code = status_code


class TriggerEvaluationError(PersonalizationError):
    """Trigger could not be evaluated."""
    
    def __init__(self, message: str = "Trigger evaluation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("TRIGGER_EVALUATION_ERROR", message, details)


class ActionExecutionError(PersonalizationError):
    """Action could not be applied to the page."""
    
    def __init__(self, message: str = "Action execution failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("ACTION_EXECUTION_ERROR", message, details)


class InitializationFailure(PersonalizationError):
    """Initial personalization pass failed."""
    
    def __init__(self, message: str = "Initialization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("INITIALIZATION_FAILURE", message, details)
