"""
Custom exceptions for the order-entry service.
"""
from typing import List, Optional


class OrderEntryException(Exception):
    """Base exception for all order-entry errors"""
    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class ValidationError(OrderEntryException):
    """Raised when input validation fails"""
    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class NotFoundError(OrderEntryException):
    """Raised when a requested resource is not found"""
    def __init__(self, resource: str, identifier: str):
        message = f"{resource} with identifier '{identifier}' not found"
        super().__init__(message, status_code=404)


class SchemaError(OrderEntryException):
    """Raised when a template payload cannot be turned into a canonical schema"""
    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class CellValidationError(OrderEntryException):
    """Raised when a grid cell rejects a write"""
    def __init__(self, row: int, col: int, message: str):
        self.row = row
        self.col = col
        super().__init__(f"Cell ({row}, {col}): {message}", status_code=400)


class SubmissionValidationError(OrderEntryException):
    """
    Raised when an order cannot be submitted.

    Carries the user-facing messages so the caller can show all of them at once.
    """
    def __init__(self, messages: List[str]):
        self.messages = list(messages)
        super().__init__("; ".join(self.messages), status_code=422)


class ExternalServiceError(OrderEntryException):
    """Raised when an external collaborator fails"""
    def __init__(self, service: str, message: str, original_error: Optional[Exception] = None):
        self.service = service
        self.original_error = original_error
        full_message = f"{service} service error: {message}"
        if original_error:
            full_message += f" (Original: {str(original_error)})"
        super().__init__(full_message, status_code=502)


class GridRendererError(ExternalServiceError):
    """Raised when the spreadsheet renderer cannot be loaded or initialized"""
    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__("GridRenderer", message, original_error)


class ConfigurationError(OrderEntryException):
    """Raised when there's a configuration issue"""
    def __init__(self, message: str):
        super().__init__(message, status_code=500)
