"""
Utility functions for RAG module.
"""

from __future__ import annotations

import re
from typing import List

_NON_WORD_RE = re.compile(r"[^\w\s]")


def tokenize(text: str) -> List[str]:
    """Lowercase, replace punctuation with spaces, split on whitespace."""
    return _NON_WORD_RE.sub(" ", text.lower()).split()


def chunk_key(document_id: int, chunk_index: int) -> str:
    """The "documentId:chunkIndex" identity used to de-duplicate chunks."""
    return f"{document_id}:{chunk_index}"
