from fastapi import HTTPException, status
from typing import Any, Dict, Optional


class BaseAPIException(HTTPException):
    """Base exception for API errors."""

    def __init__(
        self,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail: str = "An error occurred",
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)


class UnauthenticatedException(BaseAPIException):
    """Exception raised when the request carries no valid session."""

    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"}
        )


class ValidationException(BaseAPIException):
    """Exception raised when validation fails."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail
        )


class GenerationNotFoundException(BaseAPIException):
    """
    Exception raised when a generation does not exist or belongs to
    another user. Both cases look the same to the caller.
    """

    def __init__(self, generation_id: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Generation with ID {generation_id} not found"
        )


class UserNotFoundException(BaseAPIException):
    """Exception raised when a user profile is not found."""

    def __init__(self, user_id: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User with ID {user_id} not found"
        )


class InsufficientCreditsException(BaseAPIException):
    """Exception raised when a user cannot pay for the requested work."""

    def __init__(self, required: int = 1, available: Optional[int] = None):
        self.required = required
        self.available = available
        super().__init__(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail="Insufficient credits"
        )


class InvalidStateTransitionException(BaseAPIException):
    """Exception raised when a generation cannot move to the requested status."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Generation cannot move from '{current}' to '{target}'"
        )


class AnalysisFailureException(BaseAPIException):
    """Exception raised when the AI adapter errors or returns unusable output."""

    def __init__(self, detail: str = "AI analysis failed"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail
        )


class ImageGenerationFailedException(AnalysisFailureException):
    """Exception raised when rendering a single image slot fails."""

    def __init__(self, image_type: str, detail: str, image_id: Optional[str] = None):
        self.image_type = image_type
        self.image_id = image_id
        super().__init__(detail=f"Failed to generate {image_type} image: {detail}")


class DatabaseException(BaseAPIException):
    """Exception raised when a database or storage operation fails."""

    def __init__(self, detail: str = "Database operation failed"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail
        )


class PaymentVerificationException(BaseAPIException):
    """Exception raised when a webhook payload fails signature verification."""

    def __init__(self, detail: str = "Invalid signature"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail
        )


class ConfigurationException(BaseAPIException):
    """Exception raised when a required integration is not configured."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail
        )
