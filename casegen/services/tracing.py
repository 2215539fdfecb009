"""
Langfuse Tracing Service for CaseGen
Provides observability for case runs, pipeline phases and generator calls.
"""

import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from langfuse import Langfuse

logger = logging.getLogger("casegen")


class TracingService:
    """
    Service for tracing case generation using Langfuse.

    Provides:
    - One trace per case run (a root span)
    - A child span per pipeline phase
    - Generation records for content generator calls
    - Error events

    Falls back to no-op if Langfuse is not configured.
    """

    def __init__(self):
        self._client: Optional[Langfuse] = None
        self._enabled = False
        self._traces: Dict[str, Any] = {}  # case_id -> root span

    def initialize(
        self,
        public_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        host: Optional[str] = None,
    ) -> bool:
        """
        Initialize Langfuse client.

        Args:
            public_key: Langfuse public key (or LANGFUSE_PUBLIC_KEY env var)
            secret_key: Langfuse secret key (or LANGFUSE_SECRET_KEY env var)
            host: Langfuse host URL (or LANGFUSE_HOST env var)

        Returns:
            True if initialization successful, False otherwise
        """
        public_key = public_key or os.getenv("LANGFUSE_PUBLIC_KEY")
        secret_key = secret_key or os.getenv("LANGFUSE_SECRET_KEY")
        host = host or os.getenv("LANGFUSE_HOST", "https://cloud.langfuse.com")

        if not public_key or not secret_key:
            logger.info("[tracing] Langfuse keys not configured. Tracing disabled.")
            return False

        try:
            self._client = Langfuse(
                public_key=public_key,
                secret_key=secret_key,
                host=host,
            )
            self._enabled = True
            logger.info(f"[tracing] Langfuse tracing initialized. Host: {host}")
            return True
        except Exception as e:
            logger.warning(f"[tracing] Failed to initialize Langfuse: {e}")
            return False

    @property
    def enabled(self) -> bool:
        """Check if tracing is enabled."""
        return self._enabled and self._client is not None

    def start_trace(
        self,
        case_id: str,
        name: str = "case_generation",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Any]:
        """
        Start the root span for a case run.

        Args:
            case_id: Case identifier
            name: Name of the trace
            metadata: Additional metadata to attach

        Returns:
            Root span or None if tracing disabled
        """
        if not self.enabled:
            return None
        if case_id in self._traces:
            return self._traces[case_id]

        try:
            root = self._client.start_span(
                name=name,
                metadata={"case_id": case_id, **(metadata or {})},
            )
            root.update_trace(name=name, session_id=case_id, metadata={"case_id": case_id})
            self._traces[case_id] = root
            return root
        except Exception as e:
            logger.warning(f"[tracing] Failed to start trace for case {case_id}: {e}")
            return None

    @property
    def open_traces(self) -> List[str]:
        """Case ids whose root span has not been ended."""
        return sorted(self._traces)

    def end_trace(
        self,
        case_id: str,
        output: Optional[Dict[str, Any]] = None,
    ) -> None:
        """End the root span for a case and flush to Langfuse."""
        if not self.enabled:
            return

        root = self._traces.pop(case_id, None)
        if root:
            try:
                root.update(output=output)
                root.update_trace(output=output)
                root.end()
                self._client.flush()
            except Exception as e:
                logger.warning(f"[tracing] Failed to end trace for case {case_id}: {e}")

    @asynccontextmanager
    async def span(
        self,
        case_id: str,
        name: str,
        input_data: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        """
        Context manager for a phase span within the case trace.

        Args:
            case_id: Case identifier
            name: Name of the span (usually the phase)
            input_data: Input data for the span
            metadata: Additional metadata

        Yields:
            Span object or None if tracing disabled
        """
        if not self.enabled:
            yield None
            return

        root = self._traces.get(case_id) or self.start_trace(case_id)
        if not root:
            yield None
            return

        start_time = time.time()
        span = None
        try:
            span = root.start_span(name=name, input=input_data, metadata=metadata or {})
        except Exception as e:
            logger.warning(f"[tracing] Failed to start span {name} for case {case_id}: {e}")

        try:
            yield span
        except Exception as e:
            if span:
                span.update(level="ERROR", status_message=str(e))
            raise
        finally:
            if span:
                latency_ms = (time.time() - start_time) * 1000
                span.update(metadata={**(metadata or {}), "latency_ms": latency_ms})
                span.end()

    def log_generation(
        self,
        case_id: str,
        name: str,
        model: str,
        provider: str,
        prompt: str,
        output: str,
        latency_ms: float = 0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Record one content generator call under the case trace."""
        if not self.enabled:
            return
        root = self._traces.get(case_id)
        if not root:
            return
        try:
            generation = root.start_generation(
                name=name,
                model=model,
                input=prompt[:4000],
                metadata={"provider": provider, "latency_ms": latency_ms, **(metadata or {})},
            )
            generation.update(output=output[:4000])
            generation.end()
        except Exception as e:
            logger.warning(f"[tracing] Failed to log generation: {e}")

    def log_event(
        self,
        case_id: str,
        name: str,
        level: str = "DEFAULT",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Log an event within a case trace.

        Args:
            case_id: Case identifier
            name: Event name
            level: Event level (DEFAULT, DEBUG, WARNING, ERROR)
            metadata: Additional metadata
        """
        if not self.enabled:
            return
        root = self._traces.get(case_id)
        if not root:
            return
        try:
            event = root.start_span(name=name, metadata=metadata or {})
            event.update(level=level)
            event.end()
        except Exception as e:
            logger.warning(f"[tracing] Failed to log event: {e}")

    def log_error(
        self,
        case_id: str,
        error: str,
        phase: Optional[str] = None,
        item_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log an error event naming the phase and item."""
        self.log_event(
            case_id=case_id,
            name=f"error_{phase or 'unknown'}",
            level="ERROR",
            metadata={
                "error": error,
                "phase": phase,
                "item_id": item_id,
                **(metadata or {}),
            },
        )

    def flush(self) -> None:
        """Flush all pending traces to Langfuse."""
        if self.enabled and self._client:
            try:
                self._client.flush()
            except Exception as e:
                logger.warning(f"[tracing] Failed to flush traces: {e}")

    def shutdown(self) -> None:
        """Shutdown the tracing service."""
        self.flush()
        if self._client:
            try:
                self._client.shutdown()
            except Exception as e:
                logger.debug(f"[tracing] Shutdown error ignored: {e}")
        self._client = None
        self._enabled = False
        self._traces.clear()


# Global instance, initialized by the orchestrator
tracing_service = TracingService()
