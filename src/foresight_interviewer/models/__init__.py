"""
Models module for LLM client abstraction.

Provides the Ollama-backed client used for question generation and a
resettable provider that owns the shared client handle.
"""
