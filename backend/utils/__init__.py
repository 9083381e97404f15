"""
Backend 工具模組
提供日誌、異常處理、安全性等工具
"""

from .logger import get_logger, LoggerFactory
from .exceptions import (
    InsightDeskException,
    ValidationError,
    PersistenceError,
    AIResponseError,
    IngestionDiscard,
    AuthError,
    NotAuthenticatedError,
    CommandInProgressError,
    SecurityError,
)
from .security import sanitize_user_id, sanitize_filename

__all__ = [
    # Logger
    "get_logger",
    "LoggerFactory",
    # Exceptions
    "InsightDeskException",
    "ValidationError",
    "PersistenceError",
    "AIResponseError",
    "IngestionDiscard",
    "AuthError",
    "NotAuthenticatedError",
    "CommandInProgressError",
    "SecurityError",
    # Security
    "sanitize_user_id",
    "sanitize_filename",
]
