"""
Case Logging Service for CaseGen

Persists raw generator responses and step metadata into the logs container so a
case run can be inspected after the fact. Every write is best-effort: a logging
failure is reported and never interrupts generation.
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

from .artifact_store import ArtifactStore

logger = logging.getLogger("casegen")


def _step_file(step: str) -> str:
    return re.sub(r"[^a-z0-9_\-]+", "_", step.lower()).strip("_") or "step"


class CaseLoggingService:
    """Step-level logs per case in the logs container."""

    def __init__(self, store: ArtifactStore, container: str = "logs"):
        self.store = store
        self.container = container

    def log_step(self, case_id: str, step: str, details: str = "") -> None:
        message = f"[{case_id}] {step}: {details}" if details else f"[{case_id}] {step}"
        logger.info(message)

    def log_progress(self, case_id: str, current: int, total: int, step: str) -> None:
        percent = (current / total * 100) if total else 0
        logger.info(f"[{case_id}] progress {current}/{total} ({percent:.0f}%) - {step}")

    async def log_step_response(self, case_id: str, step: str, response: Any) -> Optional[str]:
        """
        Store the raw generator response for a step.

        Args:
            case_id: Case identifier
            step: Step name (e.g. "plan_suspects", "design_documents_interview")
            response: Raw text or JSON-compatible value

        Returns:
            Locator of the stored log, or None if the write failed
        """
        path = f"{case_id}/steps/{_step_file(step)}.json"
        try:
            body = response if isinstance(response, str) else json.dumps(response, ensure_ascii=False, indent=2)
            return await self.store.save(self.container, path, body, "application/json")
        except Exception as e:
            logger.warning(f"[log_step_response] Failed to log step {step} for case {case_id}: {e}")
            return None

    async def log_step_metadata(self, case_id: str, step: str, metadata: Any) -> Optional[str]:
        path = f"{case_id}/steps/{_step_file(step)}_metadata.json"
        payload = {"loggedAt": datetime.now(timezone.utc).isoformat(), "step": step, "metadata": metadata}
        try:
            return await self.store.save(
                self.container, path, json.dumps(payload, ensure_ascii=False, indent=2, default=str), "application/json"
            )
        except Exception as e:
            logger.warning(f"[log_step_metadata] Failed to log metadata for {step} (case {case_id}): {e}")
            return None
