# util/enums.py
from enum import Enum
from typing import NamedTuple
from fastapi import status


class Color(str, Enum):
    RESET = "\033[0m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    BOLD = "\033[1m"

    def __str__(self):
        return self.value


class Environment(str, Enum):
    DEV = "dev"
    PROD = "prod"


class ErrorInfo(NamedTuple):
    message: str
    http_status: int


class ErrorMessage(Enum):
    INVOICE_NOT_FOUND = ErrorInfo("Invoice not found", status.HTTP_404_NOT_FOUND)
    ITEM_NOT_FOUND = ErrorInfo("Invoice item not found", status.HTTP_404_NOT_FOUND)
    ALREADY_PROCESSING = ErrorInfo(
        "Invoice is already being processed", status.HTTP_409_CONFLICT
    )
    NOT_READY_FOR_APPROVAL = ErrorInfo(
        "Invoice must be in 'review' status to be approved",
        status.HTTP_400_BAD_REQUEST,
    )
    UNSUPPORTED_MEDIA_TYPE = ErrorInfo(
        "Unsupported file type", status.HTTP_415_UNSUPPORTED_MEDIA_TYPE
    )
    DOCUMENT_MISSING = ErrorInfo("Stored document not found", status.HTTP_410_GONE)
