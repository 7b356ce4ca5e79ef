"""
Custom exception classes for the application.

Provides standardized HTTP exceptions for common error cases.
"""

from fastapi import HTTPException, status


class NotFoundException(HTTPException):
    """Exception raised when a requested resource is not found."""

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
        )


class BadRequestException(HTTPException):
    """Exception raised for invalid request data."""

    def __init__(self, detail: str = "Bad request"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
        )


class ServiceUnavailableException(HTTPException):
    """Exception raised when the reference data store cannot be reached."""

    def __init__(self, detail: str = "Reference data temporarily unavailable"):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            headers={"Retry-After": "30"},
        )
