"""
Context builder for RAG answer generation.

Formats retrieved chunks into labelled context blocks so the model can cite
sources by chunk, then substitutes context and question into a prompt template.
"""

from __future__ import annotations

from typing import List, Sequence

from src.rag.retriever import RetrievedChunk

from .prompts import CONTEXT_PLACEHOLDER, QUERY_PLACEHOLDER


def _label(i: int, chunk: RetrievedChunk) -> str:
    label = f"Chunk {i} | Doc {chunk.document_id}, Chunk {chunk.chunk_index}"
    if chunk.page_number is not None:
        label += f", Page {chunk.page_number}"
    return f"[{label}]"


def build_context(chunks: Sequence[RetrievedChunk]) -> str:
    """
    Join chunks into one context string.

    Each block looks like "[Chunk 1 | Doc 3, Chunk 7, Page 2]\\n<text>" and blocks
    are separated by a blank line. Numbering starts at 1 and follows list order.
    """
    parts: List[str] = [f"{_label(i, c)}\n{c.text}" for i, c in enumerate(chunks, 1)]
    return "\n\n".join(parts)


def render_prompt(template: str, context: str, query: str) -> str:
    """Substitute the first {{context}} and then the first {{query}} placeholder."""
    return template.replace(CONTEXT_PLACEHOLDER, context, 1).replace(QUERY_PLACEHOLDER, query, 1)
