"""Language-model collaborator (LlamaIndex-backed)."""

from .client import LLMClient, parse_json_output

__all__ = ["LLMClient", "parse_json_output"]
