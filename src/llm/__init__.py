"""
LLM client module for OpenAI-compatible chat completions.
"""

from .client import ChatStream, GenerationResult, LLMClient, TokenUsage, create_client

__all__ = ["ChatStream", "GenerationResult", "LLMClient", "TokenUsage", "create_client"]
