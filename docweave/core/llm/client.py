"""Language-model collaborator.

Wraps a LlamaIndex LLM (``Settings.llm`` unless one is injected) behind a
single structured call: ``generate(prompt, schema) -> dict``.

Failures are classified for the caller:
- LLMError(transient=True): timeout, connection reset, rate limit
- LLMError(transient=False): output that is not JSON even after repair
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from llama_index.core import Settings

from ..errors import LLMError

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 300.0

_TRANSIENT_NAME_HINTS = ("timeout", "connection", "ratelimit", "unavailable", "overloaded")


def parse_json_output(raw: str) -> Dict[str, Any]:
    """Parse JSON from LLM output, stripping markdown fences.

    Falls back to the outermost ``{...}`` span when the cleaned text does
    not parse. Raises LLMError (non-transient) when nothing parses.
    """
    cleaned = raw
    if "```json" in cleaned:
        cleaned = cleaned.split("```json", 1)[1]
    elif cleaned.lstrip().startswith("```"):
        cleaned = cleaned.lstrip()[3:]
    if "```" in cleaned:
        cleaned = cleaned.split("```", 1)[0]
    cleaned = cleaned.strip()

    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.warning(f"JSON parse failed: {e}. Attempting repair.")
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start < 0 or end <= start:
            raise LLMError(f"Unparseable model output: {e}") from e
        try:
            parsed = json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError as e2:
            raise LLMError(f"Unparseable model output: {e2}") from e2

    if not isinstance(parsed, dict):
        raise LLMError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    name = type(exc).__name__.lower()
    return any(hint in name for hint in _TRANSIENT_NAME_HINTS)


class LLMClient:
    """Structured-output wrapper around a LlamaIndex LLM."""

    def __init__(self, llm=None, request_timeout: float = DEFAULT_REQUEST_TIMEOUT):
        self._llm = llm
        self.request_timeout = request_timeout

    @property
    def llm(self):
        llm = self._llm if self._llm is not None else Settings.llm
        if llm is None:
            raise LLMError("No LLM configured", transient=False)
        return llm

    @staticmethod
    def _with_schema(prompt: str, schema: Optional[Dict[str, Any]]) -> str:
        if not schema:
            return prompt
        return (
            f"{prompt}\n\n"
            "Respond with a single JSON object matching this schema. "
            "No prose outside the JSON.\n"
            f"```json\n{json.dumps(schema, indent=2)}\n```"
        )

    async def complete_text(self, prompt: str) -> str:
        """Raw completion text."""
        try:
            response = await asyncio.wait_for(
                self.llm.acomplete(prompt), timeout=self.request_timeout
            )
        except LLMError:
            raise
        except Exception as e:
            raise LLMError(f"LLM call failed: {e}", transient=_is_transient(e)) from e
        return (response.text or "").strip()

    async def generate(self, prompt: str, schema: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Complete ``prompt`` and parse the structured JSON response."""
        raw = await self.complete_text(self._with_schema(prompt, schema))
        return parse_json_output(raw)

    async def generate_with_retry(
        self,
        prompt: str,
        schema: Optional[Dict[str, Any]] = None,
        retries: int = 1,
    ) -> Dict[str, Any]:
        """generate() with ``retries`` extra attempts on transient errors."""
        attempt = 0
        while True:
            try:
                return await self.generate(prompt, schema)
            except LLMError as e:
                if not e.is_transient() or attempt >= retries:
                    raise
                attempt += 1
                logger.warning(f"Transient LLM error, retrying ({attempt}/{retries}): {e}")
