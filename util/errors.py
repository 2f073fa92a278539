from typing import Optional
from fastapi import HTTPException, status


class AppError(HTTPException):
    # Flow: raise AppError to short-circuit with a typed status & message.
    def __init__(
        self, message: str, http_status: int = status.HTTP_400_BAD_REQUEST
    ) -> None:
        super().__init__(status_code=http_status, detail=message)


class RateLimitedError(Exception):
    """
    Raised by upstream clients when the provider throttles a call (HTTP 429/529).
    `retry_after` carries the provider hint in seconds when one was sent.
    """

    def __init__(self, message: str = "rate limited", retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after
