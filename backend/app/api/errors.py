"""
Checkout error → HTTP response translation

Author: TM3
Date: 2025-10-17
"""
from fastapi import HTTPException

from app.core.exceptions import CheckoutError


def http_error(error: CheckoutError) -> HTTPException:
    """HTTPException carrying the error's status code, message and details"""
    detail = {"message": error.message}
    if error.details:
        detail["details"] = error.details
    return HTTPException(status_code=error.status_code, detail=detail)
