"""LLM access for AI-assisted scheduling."""
from .client import LLMClient, extract_json, get_llm_client

__all__ = [
    "LLMClient",
    "extract_json",
    "get_llm_client",
]
