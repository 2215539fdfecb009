"""
Pytest configuration and fixtures for casegen tests.

This module provides:
- Network blocking fixture to prevent accidental API calls in CI
- Retry back-off patched to zero so retry paths run instantly
- A scripted content generator standing in for the LLM providers
- A temporary local artifact store and a context manager over it
"""

import copy
import socket
from typing import Any, Callable, Dict, List, Optional, Union
from unittest.mock import patch

import pytest

from casegen.agents.base import ContentGenerator
from casegen.core.context_manager import ContextManager
from casegen.core.errors import GeneratorError
from casegen.services.artifact_store import LocalArtifactStore


class NetworkBlockedError(Exception):
    """Raised when a test attempts to make a network connection."""
    pass


def _block_socket_connect(*args, **kwargs):
    """Block all socket connections to prevent accidental API calls."""
    raise NetworkBlockedError(
        "Network access is blocked in unit tests. "
        "If you need to test network functionality, use mocks. "
        "This prevents accidental OpenAI/Anthropic API calls that cost money."
    )


@pytest.fixture(autouse=True)
def block_network():
    """
    Automatically block all network connections in tests.

    Real integration tests should be marked with @pytest.mark.integration
    and run separately.
    """
    with patch.object(socket.socket, 'connect', _block_socket_connect):
        with patch.object(socket, 'create_connection', _block_socket_connect):
            yield


@pytest.fixture(autouse=True)
def no_retry_delay():
    """Retries still happen, without the exponential back-off wait."""
    with patch("casegen.core.retry.backoff_delay", return_value=0):
        yield


@pytest.fixture(autouse=True)
def no_langfuse(monkeypatch):
    """Tracing stays a no-op even when the developer has Langfuse keys set."""
    monkeypatch.delenv("LANGFUSE_PUBLIC_KEY", raising=False)
    monkeypatch.delenv("LANGFUSE_SECRET_KEY", raising=False)


# ============================================================================
# Scripted generator
# ============================================================================

Script = Union[Any, List[Any], Callable[[str, str], Any]]

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image"


class ScriptedGenerator(ContentGenerator):
    """
    Content generator that replays scripted responses.

    structured maps a schema name to one of:
    - a value returned on every call
    - a list, consumed one item per call (the last item repeats)
    - a callable (system_prompt, user_prompt) -> value
    A response that is an exception instance is raised instead of returned.
    """

    provider_name = "scripted"

    def __init__(
        self,
        structured: Optional[Dict[str, Script]] = None,
        text: Script = "",
        image: Union[bytes, Exception, None] = PNG_BYTES,
        reference_image: Union[bytes, Exception, None] = PNG_BYTES,
    ):
        super().__init__(model="scripted-model")
        self.structured = dict(structured or {})
        self.text = text
        self.image = image
        self.reference_image = reference_image
        self.calls: List[Dict[str, Any]] = []

    def _next(self, script: Script, system_prompt: str, user_prompt: str) -> Any:
        if callable(script):
            value = script(system_prompt, user_prompt)
        elif isinstance(script, list):
            value = script.pop(0) if len(script) > 1 else script[0]
        else:
            value = script
        if isinstance(value, Exception):
            raise value
        return copy.deepcopy(value)

    def calls_for(self, kind: str, name: Optional[str] = None) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["kind"] == kind and (name is None or c.get("name") == name)]

    async def generate_text(self, case_id, system_prompt, user_prompt, temperature=0.7, max_tokens=None) -> str:
        self.calls.append({"kind": "text", "case_id": case_id, "system": system_prompt, "user": user_prompt})
        return self._next(self.text, system_prompt, user_prompt)

    async def generate_structured(self, case_id, system_prompt, user_prompt, schema,
                                  schema_name="response", temperature=0.4) -> Any:
        self.calls.append(
            {"kind": "structured", "name": schema_name, "case_id": case_id, "system": system_prompt, "user": user_prompt}
        )
        if schema_name not in self.structured:
            raise GeneratorError(f"No scripted response for {schema_name}", case_id=case_id)
        return self._next(self.structured[schema_name], system_prompt, user_prompt)

    async def generate_image(self, case_id, prompt, size="1024x1024") -> bytes:
        self.calls.append({"kind": "image", "case_id": case_id, "prompt": prompt})
        if isinstance(self.image, Exception):
            raise self.image
        return self.image

    async def generate_image_with_reference(self, case_id, prompt, reference_image, size="1024x1024") -> bytes:
        self.calls.append({"kind": "image_reference", "case_id": case_id, "prompt": prompt})
        if isinstance(self.reference_image, Exception):
            raise self.reference_image
        return self.reference_image


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def store(tmp_path):
    """Local artifact store rooted in a temporary directory."""
    return LocalArtifactStore(tmp_path / "artifacts")


@pytest.fixture
def context(store):
    """Context manager with caching disabled."""
    return ContextManager(store, "context", cache_ttl_seconds=0)


@pytest.fixture
def case_id():
    return "case0001"
