"""
Answer generation: prompt templates, context assembly and cost accounting.
"""

from .config import GenerationConfig, PricingConfig
from .cost import estimate_cost
from .prompts import DEFAULT_SYSTEM_PROMPT, DEFAULT_TEMPLATE_NAME

__all__ = [
    "DEFAULT_SYSTEM_PROMPT",
    "DEFAULT_TEMPLATE_NAME",
    "GenerationConfig",
    "PricingConfig",
    "estimate_cost",
]
