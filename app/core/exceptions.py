from typing import Any, Dict, Optional

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.extra = extra or {}

    @property
    def detail(self) -> Any:
        """HTTP detail payload: plain message, or message plus references (e.g. conflicting invoice_no)."""
        if not self.extra:
            return self.message
        return {"message": self.message, **self.extra}


class ValidationError(ServiceError):
    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST, extra)


class NotFoundError(ServiceError):
    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND, extra)


class ConflictError(ServiceError):
    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT, extra)
