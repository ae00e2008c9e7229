"""
Events emitted by a query run and their Server-Sent-Events framing.

Order within one run: metadata (once), token (zero or more), then exactly one
of done or error.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

SSE_DONE = "data: [DONE]\n\n"


@dataclass(frozen=True)
class PipelineEvent:
    type: str
    data: Dict[str, Any]

    @classmethod
    def metadata(
        cls,
        timings: Dict[str, int],
        retrieved_chunks: List[Dict[str, Any]],
        settings: Dict[str, Any],
        transformed_queries: List[str],
    ) -> "PipelineEvent":
        return cls(
            "metadata",
            {
                "timings": timings,
                "retrievedChunks": retrieved_chunks,
                "settings": settings,
                "transformedQueries": transformed_queries,
            },
        )

    @classmethod
    def token(cls, token: str) -> "PipelineEvent":
        return cls("token", {"token": token})

    @classmethod
    def done(cls, answer_text: str, query_log_id: Optional[int], final_cost_usd: float) -> "PipelineEvent":
        return cls(
            "done",
            {"answerText": answer_text, "queryLogId": query_log_id, "finalCostUsd": final_cost_usd},
        )

    @classmethod
    def error(cls, message: str) -> "PipelineEvent":
        return cls("error", {"message": message})

    @property
    def is_terminal(self) -> bool:
        return self.type in ("done", "error")

    def to_sse(self) -> str:
        payload = json.dumps({"type": self.type, "data": self.data})
        return f"event: {self.type}\ndata: {payload}\n\n"
