"""
Query pipeline: settings resolution, event stream and orchestration.
"""

from .events import SSE_DONE, PipelineEvent
from .models import (
    PipelineSettings,
    PromptTemplate,
    QueryLogRecord,
    QueryRequest,
    SearchMode,
    Timings,
    resolve_settings,
)
from .orchestrator import QueryPipeline

__all__ = [
    "PipelineEvent",
    "PipelineSettings",
    "PromptTemplate",
    "QueryLogRecord",
    "QueryPipeline",
    "QueryRequest",
    "SSE_DONE",
    "SearchMode",
    "Timings",
    "resolve_settings",
]
