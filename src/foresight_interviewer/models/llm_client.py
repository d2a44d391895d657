"""
LLM client abstraction.

Talks to a local model through the Ollama CLI and recovers JSON objects from
loosely formatted model output.
"""

import ast
import asyncio
import json
import logging
import re
import subprocess
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_MODEL = "gpt-oss:20b"


class Message(BaseModel):
    """A message in a conversation."""

    role: str = Field(..., description="Role of the speaker (system, user, assistant)")
    content: str = Field(..., description="Message content")


class LLMResponse(BaseModel):
    """Response from an LLM."""

    content: str = Field(..., description="Generated text content")
    finish_reason: str = Field(default="stop", description="Reason for completion")
    model: str = Field(default="", description="Model used for generation")
    raw_response: dict[str, Any] = Field(
        default_factory=dict,
        description="Raw request/response or error details",
    )


class OllamaError(Exception):
    """Exception raised when Ollama CLI fails."""

    def __init__(self, message: str, return_code: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.return_code = return_code
        self.stderr = stderr


class LLMClientBase(ABC):
    """Abstract base class for LLM clients."""

    @abstractmethod
    async def chat(
        self,
        messages: list[Message],
        temperature: float = 0.7,
        **kwargs: Any,
    ) -> LLMResponse:
        """
        Generate a chat completion.

        Args:
            messages: Conversation history.
            temperature: Sampling temperature.
            **kwargs: Additional model-specific parameters.

        Returns:
            Generated response. Transport failures are reported with
            ``finish_reason="error"`` rather than raised.
        """
        ...

    def extract_json(self, content: str) -> dict[str, Any]:
        """
        Pull the first JSON object (or array) out of model output.

        Arrays are wrapped as ``{"items": [...]}``.

        Args:
            content: Raw model output, possibly with prose or code fences around the JSON.

        Returns:
            The parsed object, or an empty dict when nothing can be recovered.
        """
        content = (content or "").strip()
        if not content:
            return {}

        start_idx = content.find("{")
        if start_idx == -1:
            start_idx = content.find("[")

        if start_idx != -1:
            # Find matching closing bracket
            bracket_count = 0
            end_idx = len(content)
            open_bracket = content[start_idx]
            close_bracket = "}" if open_bracket == "{" else "]"

            for i, char in enumerate(content[start_idx:], start=start_idx):
                if char == open_bracket:
                    bracket_count += 1
                elif char == close_bracket:
                    bracket_count -= 1
                    if bracket_count == 0:
                        end_idx = i + 1
                        break

            parsed = self._parse_json_loose(content[start_idx:end_idx])
            if isinstance(parsed, dict):
                return parsed
            if isinstance(parsed, list):
                return {"items": parsed}

        parsed = self._parse_json_loose(content)
        if isinstance(parsed, dict):
            return parsed
        if isinstance(parsed, list):
            return {"items": parsed}

        logger.warning("[LLM] Failed to parse JSON from response")
        logger.debug(f"Response content: {content[:500]}")
        return {}

    def _fix_json_string(self, json_str: str) -> str:
        """
        Attempt to fix common JSON issues from LLM output.

        Args:
            json_str: Raw JSON string that may have issues.

        Returns:
            Cleaned JSON string.
        """
        if not json_str:
            return ""

        result = json_str.strip()

        result = re.sub(r"^```(?:json)?\s*", "", result, flags=re.IGNORECASE)
        result = re.sub(r"\s*```$", "", result)

        result = (
            result.replace("“", '"')
            .replace("”", '"')
            .replace("‘", "'")
            .replace("’", "'")
        )

        # Trailing commas before closing braces/brackets.
        result = re.sub(r",(\s*[}\]])", r"\1", result)

        # Line comments after values, e.g. `"isProbing": true, // follow-up`.
        result = re.sub(r"(?m)(?<=[,{\[\w\"])\s*//[^\n\"]*$", "", result)

        result = re.sub(r"\bNone\b", "null", result)
        result = re.sub(r"\bTrue\b", "true", result)
        result = re.sub(r"\bFalse\b", "false", result)

        # Bare keys right after { or , ({foo: "bar"}).
        result = re.sub(
            r"([\{,]\s*)([A-Za-z_][A-Za-z0-9_\-]*)(\s*:)",
            r'\1"\2"\3',
            result,
        )

        if result.count("'") > 0 and result.count('"') == 0:
            result = result.replace("'", '"')

        return result

    def _coerce_to_json_types(self, obj: Any) -> Any:
        """Coerce a Python literal (from the ``ast`` fallback) to JSON-safe types."""
        if obj is ...:
            return None
        if obj is None or isinstance(obj, (str, int, float, bool)):
            return obj
        if isinstance(obj, dict):
            return {str(k): self._coerce_to_json_types(v) for k, v in obj.items()}
        if isinstance(obj, (list, tuple, set)):
            return [self._coerce_to_json_types(v) for v in obj]
        return str(obj)

    def _parse_json_loose(self, raw: str) -> dict[str, Any] | list[Any] | None:
        """Parse JSON with best-effort repair. Returns a dict/list on success, else None."""
        if not raw:
            return None

        cleaned = self._fix_json_string(raw)
        try:
            return json.loads(cleaned)
        except json.JSONDecodeError:
            pass

        try:
            obj = ast.literal_eval(raw.strip())
        except (ValueError, SyntaxError, TypeError, MemoryError, RecursionError):
            try:
                obj = ast.literal_eval(cleaned)
            except (ValueError, SyntaxError, TypeError, MemoryError, RecursionError):
                return None

        if not isinstance(obj, (dict, list, tuple, set)):
            return None

        coerced = self._coerce_to_json_types(obj)
        try:
            return json.loads(json.dumps(coerced))
        except (TypeError, ValueError):
            return None


class LLMClient(LLMClientBase):
    """
    Ollama-based LLM client.

    All generation happens through subprocess calls to ``ollama run``.
    """

    def __init__(
        self,
        model: str | None = None,
        max_retries: int = 0,
        timeout: int = 120,
        ollama_bin: str = "ollama",
    ) -> None:
        """
        Initialize the Ollama LLM client.

        Args:
            model: Model name (defaults to gpt-oss:20b).
            max_retries: Number of retries on failure (default 0).
            timeout: Timeout in seconds for Ollama commands (default 120).
            ollama_bin: Path/name of the Ollama binary.
        """
        self._model = model or DEFAULT_OLLAMA_MODEL
        self._max_retries = max_retries
        self._timeout = timeout
        self._ollama_bin = ollama_bin

        logger.info(f"Initialized Ollama LLM client with model: {self._model}")

    @property
    def model(self) -> str:
        """Get the model name."""
        return self._model

    def _build_prompt_from_messages(self, messages: list[Message]) -> str:
        prompt_parts: list[str] = []

        for msg in messages:
            role = msg.role.lower()
            content = msg.content.strip()
            prompt_parts.append(f"[{role.upper()}]\n{content}\n")

        prompt_parts.append("[ASSISTANT]\n")
        return "\n".join(prompt_parts)

    def _run_ollama_sync(self, prompt: str) -> str:
        """
        Run Ollama CLI synchronously with retry logic.

        Args:
            prompt: The prompt to send to the model.

        Returns:
            The model's response text, stripped of whitespace.

        Raises:
            OllamaError: If Ollama fails after all retries.
        """
        cmd = [self._ollama_bin, "run", self._model]

        last_error: OllamaError | None = None
        attempts = 0

        while attempts <= self._max_retries:
            attempts += 1
            try:
                logger.debug(f"[LLM] Running Ollama (attempt {attempts}): {' '.join(cmd)}")

                process = subprocess.run(
                    cmd,
                    input=prompt,
                    capture_output=True,
                    text=True,
                    timeout=self._timeout,
                )

                if process.returncode != 0:
                    error_msg = process.stderr.strip() or f"Exit code: {process.returncode}"
                    logger.warning(f"[LLM] Ollama failed (attempt {attempts}): {error_msg}")
                    last_error = OllamaError(
                        f"Ollama exited with code {process.returncode}",
                        return_code=process.returncode,
                        stderr=process.stderr,
                    )
                    continue

                response = process.stdout.strip()
                logger.debug(f"[LLM] Ollama response length: {len(response)} chars")
                return response

            except subprocess.TimeoutExpired:
                logger.warning(f"[LLM] Ollama timed out after {self._timeout}s (attempt {attempts})")
                last_error = OllamaError(f"Ollama timed out after {self._timeout} seconds")

            except FileNotFoundError as e:
                error_msg = "Ollama CLI not found. Please install Ollama: https://ollama.ai"
                logger.error(error_msg)
                raise OllamaError(error_msg) from e

            except OSError as e:
                logger.warning(f"[LLM] Ollama error (attempt {attempts}): {e}")
                last_error = OllamaError(str(e))

        raise last_error or OllamaError("Ollama failed after all retries")

    async def chat(
        self,
        messages: list[Message],
        temperature: float = 0.7,
        **kwargs: Any,
    ) -> LLMResponse:
        """
        Generate a chat completion using Ollama.

        ``temperature`` is accepted for interface compatibility; ``ollama run``
        uses the modelfile defaults.
        """
        prompt = self._build_prompt_from_messages(messages)

        try:
            response_text = await asyncio.to_thread(self._run_ollama_sync, prompt)
        except OllamaError as e:
            logger.error(f"[LLM] Ollama chat failed: {e}")
            return LLMResponse(
                content="",
                finish_reason="error",
                model=self._model,
                raw_response={"error": str(e)},
            )

        return LLMResponse(
            content=response_text,
            finish_reason="stop",
            model=self._model,
            raw_response={"prompt": prompt, "response": response_text},
        )
