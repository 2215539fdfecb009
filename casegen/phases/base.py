"""
Phase Service Base

Shared plumbing for the generation phases: structured generator calls that are
validated into pydantic models (and retried on validation failure), bounded
fan-out over independent items, and raw-response logging per step.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..core.context_manager import ContextManager
from ..core.errors import PhaseValidationError
from ..core.retry import bounded_retry
from ..models.schema_provider import SchemaProvider

logger = logging.getLogger("casegen")

T = TypeVar("T", bound=BaseModel)

STRUCTURED_ATTEMPTS = 3

Validator = Callable[[Any], List[str]]


def format_validation_errors(prefix: str, error: ValidationError) -> List[str]:
    return [f"{prefix}: {'.'.join(str(p) for p in err['loc'])} {err['msg']}" for err in error.errors()]


def to_prompt_json(value: Any) -> str:
    """Serialize a model, list of models or plain value for a prompt."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", by_alias=True)
    elif isinstance(value, list):
        value = [v.model_dump(mode="json", by_alias=True) if isinstance(v, BaseModel) else v for v in value]
    return json.dumps(value, ensure_ascii=False, indent=2)


class PhaseService:
    """Base class for the generator-backed phases."""

    phase = "unknown"

    def __init__(
        self,
        context: ContextManager,
        generator,
        schemas: Optional[SchemaProvider] = None,
        case_logging=None,
        concurrency: int = 4,
    ):
        """
        Initialize the phase service.

        Args:
            context: Context manager holding the case artifacts
            generator: ContentGenerator assigned to this phase
            schemas: Schema provider (defaults to the built-in contracts)
            case_logging: Optional CaseLoggingService for raw responses
            concurrency: Cap on concurrent generator calls in fan-outs
        """
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.context = context
        self.generator = generator
        self.schemas = schemas or SchemaProvider()
        self.case_logging = case_logging
        self.concurrency = concurrency

    # ========================================================================
    # Structured generation
    # ========================================================================

    async def generate_model(
        self,
        case_id: str,
        step: str,
        system_prompt: str,
        user_prompt: str,
        schema_name: str,
        model: Type[T],
        validate: Optional[Validator] = None,
        item_id: Optional[str] = None,
        temperature: float = 0.4,
    ) -> T:
        """
        Call the generator for a structured artifact and validate it.

        Schema violations and failed validators raise PhaseValidationError,
        which is retried with the same prompt up to STRUCTURED_ATTEMPTS times.
        Transient provider errors are already retried by the generator.

        Args:
            case_id: Case identifier
            step: Step name used for logs (e.g. "plan_suspects")
            system_prompt: System prompt
            user_prompt: User prompt
            schema_name: Schema provider contract name
            model: Model the response is validated into
            validate: Optional callable returning a list of error strings
            item_id: Document/evidence/suspect id the call is about
            temperature: Sampling temperature

        Returns:
            The validated model instance
        """
        schema = self.schemas.get_schema(schema_name)

        @bounded_retry(
            attempts=STRUCTURED_ATTEMPTS,
            retry_on=(PhaseValidationError,),
            retry_transient=False,
            label=step,
        )
        async def attempt() -> T:
            raw = await self.generator.generate_structured(
                case_id, system_prompt, user_prompt, schema, schema_name=schema_name, temperature=temperature
            )
            await self.log_response(case_id, step, raw)
            try:
                result = model.model_validate(raw)
            except ValidationError as e:
                raise PhaseValidationError(
                    format_validation_errors(schema_name, e), case_id=case_id, phase=self.phase, item_id=item_id
                ) from e
            if validate is not None:
                errors = validate(result)
                if errors:
                    logger.warning(f"[{step}] {len(errors)} validation errors for case {case_id}: {errors[:3]}")
                    raise PhaseValidationError(errors, case_id=case_id, phase=self.phase, item_id=item_id)
            return result

        return await attempt()

    # ========================================================================
    # Fan-out
    # ========================================================================

    async def fan_out(
        self,
        items: Iterable[Any],
        worker: Callable[[Any], Awaitable[Any]],
    ) -> List[Any]:
        """
        Run worker over items with at most `concurrency` calls in flight.

        Results come back in input order; a failing item yields its exception
        instead of cancelling its siblings.
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(item: Any) -> Any:
            async with semaphore:
                return await worker(item)

        return await asyncio.gather(*(run(item) for item in items), return_exceptions=True)

    async def log_response(self, case_id: str, step: str, response: Any) -> None:
        if self.case_logging is not None:
            await self.case_logging.log_step_response(case_id, step, response)

    def log_step(self, case_id: str, step: str, details: str = "") -> None:
        if self.case_logging is not None:
            self.case_logging.log_step(case_id, step, details)
        else:
            logger.info(f"[{step}] {details} (case {case_id})")
