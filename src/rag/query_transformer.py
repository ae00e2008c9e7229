"""
Query transformation: rewrite the user's question into one or more search queries.

Strategies:
- direct: the question itself, no LLM call
- hyde: a hypothetical answer paragraph replaces the question
- multi_query: the question plus LLM rephrasings (one per line)
- step_back: the question plus one broader background question
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Protocol

from src.generation.prompts import HYDE_PROMPT, MULTI_QUERY_PROMPT, STEP_BACK_PROMPT

logger = logging.getLogger(__name__)


class QueryStrategy(str, Enum):
    DIRECT = "direct"
    HYDE = "hyde"
    MULTI_QUERY = "multi_query"
    STEP_BACK = "step_back"

    @classmethod
    def parse(cls, value: object) -> "QueryStrategy":
        try:
            return cls(value)
        except ValueError:
            return cls.DIRECT


@dataclass
class TransformationResult:
    search_queries: List[str] = field(default_factory=list)
    prompt_tokens: int = 0
    completion_tokens: int = 0
    description: str = ""


class _Generated(Protocol):
    text: str
    prompt_tokens: int
    completion_tokens: int


class TextGenerator(Protocol):
    async def generate(
        self, system_prompt: str, user_message: str, temperature: float
    ) -> _Generated: ...


class QueryTransformer:
    """Expands a question into search queries using at most one LLM call."""

    def __init__(self, llm: TextGenerator):
        self.llm = llm
        self._handlers: Dict[
            QueryStrategy, Callable[[str, float], Awaitable[TransformationResult]]
        ] = {
            QueryStrategy.DIRECT: self._direct,
            QueryStrategy.HYDE: self._hyde,
            QueryStrategy.MULTI_QUERY: self._multi_query,
            QueryStrategy.STEP_BACK: self._step_back,
        }

    async def transform(
        self, query: str, strategy: QueryStrategy, temperature: float
    ) -> TransformationResult:
        handler = self._handlers.get(QueryStrategy.parse(strategy), self._direct)
        return await handler(query, temperature)

    async def _direct(self, query: str, temperature: float) -> TransformationResult:
        return TransformationResult(
            search_queries=[query],
            description="Direct query, no transformation applied",
        )

    async def _hyde(self, query: str, temperature: float) -> TransformationResult:
        result = await self.llm.generate(HYDE_PROMPT, query, temperature)
        logger.info("HyDE generated hypothetical document (%s chars)", len(result.text))
        return TransformationResult(
            search_queries=[result.text],
            prompt_tokens=result.prompt_tokens,
            completion_tokens=result.completion_tokens,
            description="HyDE: searching with a hypothetical answer document",
        )

    async def _multi_query(self, query: str, temperature: float) -> TransformationResult:
        result = await self.llm.generate(MULTI_QUERY_PROMPT, query, temperature)
        rephrasings = [line.strip() for line in result.text.split("\n") if line.strip()]
        logger.info("Multi-query generated %s rephrasings", len(rephrasings))
        return TransformationResult(
            search_queries=[query, *rephrasings],
            prompt_tokens=result.prompt_tokens,
            completion_tokens=result.completion_tokens,
            description=f"Multi-query: searching with original + {len(rephrasings)} rephrasings",
        )

    async def _step_back(self, query: str, temperature: float) -> TransformationResult:
        result = await self.llm.generate(STEP_BACK_PROMPT, query, temperature)
        step_back = result.text.strip()
        logger.info("Step-back generated: %r", step_back)
        return TransformationResult(
            search_queries=[query, step_back],
            prompt_tokens=result.prompt_tokens,
            completion_tokens=result.completion_tokens,
            description="Step-back: searching with original + broader question",
        )
