"""
Error taxonomy shared by the retrieval pipeline, its collaborators and the API.
"""

from __future__ import annotations


class RAGError(Exception):
    """Base class for errors raised by the query pipeline and its collaborators."""


class ValidationError(RAGError):
    """Malformed request parameters; rejected before the pipeline starts."""


class NotFoundError(RAGError):
    """A referenced prompt template, document or query log does not exist."""


class CollaboratorError(RAGError):
    """An embedding, vector-store, reranker or generation call failed."""

    def __init__(self, collaborator: str, message: str):
        super().__init__(f"{collaborator}: {message}")
        self.collaborator = collaborator


class PipelineError(RAGError):
    """Unexpected failure while executing a query."""
