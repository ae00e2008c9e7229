"""
Shared error types.
"""

from .errors import (
    CollaboratorError,
    NotFoundError,
    PipelineError,
    RAGError,
    ValidationError,
)

__all__ = [
    "CollaboratorError",
    "NotFoundError",
    "PipelineError",
    "RAGError",
    "ValidationError",
]
