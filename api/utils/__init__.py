"""
API utilities for consistent response formatting.
"""
from .formatters import (
    jsonable,
    success_response,
    error_response,
)

__all__ = [
    "jsonable",
    "success_response",
    "error_response",
]
