"""Document indexing service."""

from .service import DocumentService, DocumentStore, pages_from_json, pages_to_json

__all__ = ["DocumentService", "DocumentStore", "pages_from_json", "pages_to_json"]
