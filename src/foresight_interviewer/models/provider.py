"""
Shared LLM client handle.

The question generator asks the provider for a client on every request. The
client is built lazily on first use; if building it fails, the failure is
remembered and re-raised until :meth:`LLMClientProvider.reset` is called (for
example after the user installs Ollama or fixes the model name).
"""

import logging
import shutil
from collections.abc import Callable

from foresight_interviewer.config import Settings, get_settings
from foresight_interviewer.models.llm_client import LLMClient, LLMClientBase, OllamaError

logger = logging.getLogger(__name__)


class LLMInitializationError(RuntimeError):
    """The LLM client could not be created."""


def ollama_client_factory(settings: Settings | None = None) -> Callable[[], LLMClientBase]:
    """
    Build a factory that creates an Ollama client from settings.

    The factory fails fast when the Ollama CLI is not on PATH instead of
    failing on the first question.
    """
    settings = settings or get_settings()

    def _factory() -> LLMClientBase:
        if shutil.which("ollama") is None:
            raise OllamaError("Ollama CLI not found. Please install Ollama: https://ollama.ai")
        return LLMClient(
            model=settings.llm_model_name,
            max_retries=settings.llm_max_retries,
            timeout=settings.llm_timeout,
        )

    return _factory


class LLMClientProvider:
    """Lazily-initialized client handle with a resettable error state."""

    def __init__(self, factory: Callable[[], LLMClientBase] | None = None) -> None:
        self._factory = factory or ollama_client_factory()
        self._client: LLMClientBase | None = None
        self._init_error: LLMInitializationError | None = None

    @property
    def init_error(self) -> LLMInitializationError | None:
        return self._init_error

    def get(self) -> LLMClientBase:
        """
        Return the shared client, creating it on first use.

        Raises:
            LLMInitializationError: If creation failed now or on an earlier call
                since the last reset.
        """
        if self._init_error is not None:
            raise self._init_error
        if self._client is None:
            try:
                self._client = self._factory()
            except Exception as e:
                self._init_error = LLMInitializationError(f"Failed to initialize LLM client: {e}")
                logger.error(f"[LLM] {self._init_error}")
                raise self._init_error from e
        return self._client

    def reset(self) -> None:
        """Drop the cached client and any cached initialization error."""
        self._client = None
        self._init_error = None
        logger.info("[LLM] Client state has been reset")
