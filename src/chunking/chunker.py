"""
Chunk engine: splits extracted page text into indexable passages.

Three strategies are supported:
- fixed: sliding character window with overlap
- recursive: separator-priority splitting ("\\n\\n", "\\n", ". ", " ") with greedy packing
- semantic: sentence grouping by lexical (Jaccard) similarity of neighbouring sentences

Offsets are tracked while splitting, so page numbers never depend on searching the
full text for a chunk's first occurrence.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

RECURSIVE_SEPARATORS: Tuple[str, ...] = ("\n\n", "\n", ". ", " ")
DEFAULT_SEMANTIC_THRESHOLD = 0.85

_SENTENCE_BREAK_RE = re.compile(r"(?<=[.!?])\s+")

Span = Tuple[int, int]


class ChunkStrategy(str, Enum):
    FIXED = "fixed"
    RECURSIVE = "recursive"
    SEMANTIC = "semantic"

    @classmethod
    def parse(cls, value: "ChunkStrategy | str | None") -> "ChunkStrategy":
        """Resolve a strategy tag; unknown or missing tags fall back to RECURSIVE."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.RECURSIVE


@dataclasses.dataclass(frozen=True)
class PageText:
    page_number: int
    text: str


@dataclasses.dataclass(frozen=True)
class Chunk:
    """A contiguous span of document text; the atomic retrieval unit."""

    text: str
    chunk_index: int
    page_number: Optional[int]
    start_char: int
    end_char: int


@dataclasses.dataclass(frozen=True)
class ChunkStats:
    count: int
    avg_length: int
    min_length: int
    max_length: int
    total_chars: int


def find_page_number(offset: int, pages: Sequence[PageText]) -> Optional[int]:
    """Page containing a character offset of the newline-joined page text."""
    cumulative = 0
    for page in pages:
        cumulative += len(page.text) + 1
        if offset < cumulative:
            return page.page_number
    return pages[-1].page_number if pages else None


def jaccard_similarity(a: str, b: str) -> float:
    set_a = set(a.lower().split())
    set_b = set(b.lower().split())
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def summarize_chunks(chunks: Sequence[Chunk]) -> ChunkStats:
    """Length statistics used by chunk previews."""
    lengths = [len(c.text) for c in chunks]
    total = sum(lengths)
    if not lengths:
        return ChunkStats(count=0, avg_length=0, min_length=0, max_length=0, total_chars=0)
    return ChunkStats(
        count=len(lengths),
        avg_length=round(total / len(lengths)),
        min_length=min(lengths),
        max_length=max(lengths),
        total_chars=total,
    )


class ChunkEngine:
    """Split pages into chunks under a chosen strategy."""

    def __init__(self, semantic_threshold: float = DEFAULT_SEMANTIC_THRESHOLD):
        self.semantic_threshold = semantic_threshold

    def chunk(
        self,
        pages: Sequence[PageText],
        strategy: "ChunkStrategy | str",
        chunk_size: int,
        chunk_overlap: int = 0,
    ) -> List[Chunk]:
        """
        Chunk the newline-joined text of ``pages``.

        Chunk text is always trimmed, empty chunks are dropped and chunk indices
        are the emission sequence (contiguous from 0).
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise ValueError(
                f"chunk_overlap must be in [0, chunk_size), got {chunk_overlap} for size {chunk_size}"
            )

        full_text = "\n".join(p.text for p in pages)
        resolved = ChunkStrategy.parse(strategy)

        if resolved is ChunkStrategy.FIXED:
            spans = self._fixed_spans(full_text, chunk_size, chunk_overlap)
        elif resolved is ChunkStrategy.SEMANTIC:
            spans = self._semantic_spans(full_text, chunk_size)
        else:
            spans = self._recursive_spans(full_text, chunk_size, chunk_overlap)

        chunks = list(self._emit(spans, pages))
        logger.debug(
            "Chunked %s chars into %s chunks (strategy=%s, size=%s, overlap=%s)",
            len(full_text),
            len(chunks),
            resolved.value,
            chunk_size,
            chunk_overlap,
        )
        return chunks

    @staticmethod
    def _emit(
        spans: Iterable[Tuple[str, int, int]],
        pages: Sequence[PageText],
    ) -> Iterable[Chunk]:
        index = 0
        for text, start, end in spans:
            text = text.strip()
            if not text:
                continue
            yield Chunk(
                text=text,
                chunk_index=index,
                page_number=find_page_number(start, pages),
                start_char=start,
                end_char=end,
            )
            index += 1

    # --- fixed ---

    @staticmethod
    def _fixed_spans(text: str, chunk_size: int, overlap: int) -> List[Tuple[str, int, int]]:
        spans: List[Tuple[str, int, int]] = []
        step = chunk_size - overlap
        start = 0
        while start < len(text):
            end = min(start + chunk_size, len(text))
            spans.append((text[start:end], start, end))
            start += step
        return spans

    # --- recursive ---

    def _recursive_spans(
        self, text: str, chunk_size: int, overlap: int
    ) -> List[Tuple[str, int, int]]:
        raw = _recursive_split(text, 0, len(text), RECURSIVE_SEPARATORS, chunk_size)
        spans: List[Tuple[str, int, int]] = []
        for i, (start, end) in enumerate(raw):
            segment = text[start:end]
            chunk_text = segment.strip()
            if not chunk_text:
                continue
            chunk_start = start + (len(segment) - len(segment.lstrip()))
            chunk_end = chunk_start + len(chunk_text)

            # Overlap may push a chunk past chunk_size; the bound is approximate.
            final_text = chunk_text
            if overlap > 0 and i > 0:
                prev_start, prev_end = raw[i - 1]
                overlap_text = text[prev_start:prev_end][-overlap:]
                if overlap_text and not chunk_text.startswith(overlap_text):
                    final_text = f"{overlap_text} {chunk_text}"
            spans.append((final_text, chunk_start, chunk_end))
        return spans

    # --- semantic ---

    def _semantic_spans(self, text: str, chunk_size: int) -> List[Tuple[str, int, int]]:
        sentences = _split_sentences(text)
        if not sentences:
            return []

        spans: List[Tuple[str, int, int]] = []
        group: List[str] = [sentences[0][0]]
        group_start = sentences[0][1]

        for i in range(1, len(sentences)):
            sentence, offset = sentences[i]
            candidate = " ".join(group) + " " + sentence
            similarity = jaccard_similarity(sentences[i - 1][0], sentence)
            if similarity >= self.semantic_threshold and len(candidate) <= chunk_size * 2:
                group.append(sentence)
                continue
            group_text = " ".join(group)
            spans.append((group_text, group_start, group_start + len(group_text)))
            group = [sentence]
            group_start = offset

        group_text = " ".join(group)
        spans.append((group_text, group_start, group_start + len(group_text)))
        return spans


def _recursive_split(
    text: str,
    start: int,
    end: int,
    separators: Sequence[str],
    chunk_size: int,
) -> List[Span]:
    """
    Split text[start:end] into spans no longer than chunk_size.

    Parts produced by the highest-priority separator are packed greedily; an
    over-long part recurses with the remaining separators. Once separators are
    exhausted the part is cut into chunk_size windows.
    """
    if end - start <= chunk_size:
        return [(start, end)]
    if not separators:
        return [(s, min(s + chunk_size, end)) for s in range(start, end, chunk_size)]

    separator = separators[0]
    spans: List[Span] = []
    current: Optional[Span] = None
    pos = start

    for part in text[start:end].split(separator):
        part_start, part_end = pos, pos + len(part)
        pos = part_end + len(separator)

        candidate = (current[0], part_end) if current else (part_start, part_end)
        if candidate[1] - candidate[0] <= chunk_size:
            current = candidate if candidate[1] > candidate[0] else None
            continue

        if current:
            spans.append(current)
        if part_end - part_start > chunk_size:
            spans.extend(
                _recursive_split(text, part_start, part_end, separators[1:], chunk_size)
            )
            current = None
        else:
            current = (part_start, part_end) if part_end > part_start else None

    if current:
        spans.append(current)
    return spans


def _split_sentences(text: str) -> List[Tuple[str, int]]:
    """Sentences (trimmed) with the offset of their first non-space character."""
    bounds: List[Span] = []
    pos = 0
    for match in _SENTENCE_BREAK_RE.finditer(text):
        bounds.append((pos, match.start()))
        pos = match.end()
    bounds.append((pos, len(text)))

    sentences: List[Tuple[str, int]] = []
    for start, end in bounds:
        segment = text[start:end]
        stripped = segment.strip()
        if stripped:
            sentences.append((stripped, start + len(segment) - len(segment.lstrip())))
    return sentences
