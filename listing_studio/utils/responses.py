from typing import Any, Optional, Dict
from pydantic import BaseModel


class SuccessResponse(BaseModel):
    """Standard success response model."""
    success: bool = True
    message: str
    data: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Standard error response model."""
    success: bool = False
    error: str
    detail: Optional[Any] = None


def success_response(message: str, data: Any = None) -> Dict[str, Any]:
    """Create a success response."""
    return {
        "success": True,
        "message": message,
        "data": data
    }


def error_response(error: str, detail: Optional[Any] = None, **extra: Any) -> Dict[str, Any]:
    """Create an error response, with optional extra top-level fields."""
    response = {
        "success": False,
        "error": error
    }
    if detail:
        response["detail"] = detail
    response.update(extra)
    return response
