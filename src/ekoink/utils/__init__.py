"""Utility functions and classes."""

from .auth import APIKeyManager, ApiKeyValidation, has_scope
from .logging import bind_request_context, get_logger, setup_logging
from .tokens import SessionTokenVerifier

__all__ = [
    "APIKeyManager",
    "ApiKeyValidation",
    "SessionTokenVerifier",
    "bind_request_context",
    "get_logger",
    "has_scope",
    "setup_logging",
]
