"""
Case Orchestrator
Drives one case through the pipeline state machine, one phase per advance().

Planning -> Expanding -> Designing -> Generating -> Normalizing -> Validating
-> RedTeaming -> (Fixing -> RedTeaming)* -> Packaging -> Done, or Failed.
Every phase reads its inputs from the context manager, so a run can be
resumed by a new process from the persisted state/pipeline artifact.
"""

import argparse
import asyncio
import json
import logging
import uuid
from typing import Any, Dict, Optional

# Configure logging for the pipeline
logger = logging.getLogger("casegen")
logger.setLevel(logging.DEBUG)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    logger.addHandler(handler)

from pydantic import ValidationError

from .agents import ContentGenerator, create_content_generator
from .config import (
    LLMConfiguration,
    PipelinePhase,
    PipelineSettings,
    create_default_config_from_env,
    load_settings_from_env,
)
from .core.context_manager import ContextManager
from .core.errors import CaseGenError
from .core.packaging import CASE_PATH, CasePackager
from .core.precision_editor import PrecisionEditor
from .core.quality_gate import QualityGate
from .core.red_team import RedTeamAnalyzer
from .core.state_machine import PipelineStateMachine, is_terminal
from .models import CaseSeed, NormalizedCase, PipelineRun, PipelineState, RedTeamReport
from .phases import (
    DesignService,
    ExpandService,
    GenerateService,
    NormalizeService,
    PlanService,
    ValidateService,
    VisualRegistryService,
)
from .phases.plan import SEED_PATH
from .services import (
    AnalysisCache,
    ArtifactStore,
    CaseLoggingService,
    TracingService,
    create_analysis_cache,
    create_artifact_store,
    tracing_service,
)


def red_team_path(iteration: int) -> str:
    return f"redteam/iteration-{iteration}"


class CaseOrchestrator:
    """
    Wires the phase services together and advances cases through the
    state machine.
    """

    def __init__(
        self,
        settings: Optional[PipelineSettings] = None,
        llm_config: Optional[LLMConfiguration] = None,
        store: Optional[ArtifactStore] = None,
        cache: Optional[AnalysisCache] = None,
        generators: Optional[Dict[PipelinePhase, ContentGenerator]] = None,
        tracing: Optional[TracingService] = None,
    ):
        """
        Initialize the orchestrator. Call initialize() before use.

        Args:
            settings: Pipeline settings (defaults to CASEGEN_* environment)
            llm_config: Provider configuration (defaults to the environment)
            store: Artifact store (defaults to the configured backend)
            cache: Red-team analysis cache (defaults to Redis or in-memory)
            generators: Content generator per phase; missing phases are built
                from llm_config
            tracing: Tracing service (defaults to the global Langfuse service)
        """
        self.settings = settings or load_settings_from_env()
        self._llm_config = llm_config
        self.store = store
        self.cache = cache
        self.generators: Dict[PipelinePhase, ContentGenerator] = dict(generators or {})
        self.tracing = tracing or tracing_service
        self._initialized = False

    # ========================================================================
    # Setup
    # ========================================================================

    def _generator(self, phase: PipelinePhase) -> ContentGenerator:
        if phase not in self.generators:
            if self._llm_config is None:
                self._llm_config = create_default_config_from_env()
            provider, model = self._llm_config.phase_models.for_phase(phase)
            self.generators[phase] = create_content_generator(provider, self._llm_config, model, tracing=self.tracing)
            logger.info(f"[orchestrator] {phase.value} uses {provider.value}/{model}")
        return self.generators[phase]

    async def initialize(self) -> None:
        """Connect storage, cache and tracing and build the phase services."""
        if self._initialized:
            return
        settings = self.settings
        self.tracing.initialize()
        if self.store is None:
            self.store = await create_artifact_store(settings)
        if self.cache is None:
            self.cache = await create_analysis_cache(settings)

        self.context = ContextManager(
            self.store, settings.context_container, cache_ttl_seconds=settings.context_cache_ttl_seconds
        )
        self.case_logging = CaseLoggingService(self.store, settings.logs_container)
        self.state_machine = PipelineStateMachine(self.context, settings.max_fix_iterations)

        common = {"case_logging": self.case_logging, "concurrency": settings.generation_concurrency}
        image_generator = self._generator(PipelinePhase.GENERATE)
        self.plan = PlanService(self.context, self._generator(PipelinePhase.PLAN), **common)
        self.expand = ExpandService(self.context, self._generator(PipelinePhase.EXPAND), **common)
        self.visual_registry = VisualRegistryService(
            self.context,
            self._generator(PipelinePhase.DESIGN),
            self.store,
            settings.bundles_container,
            image_generator=image_generator,
            **common,
        )
        self.design = DesignService(self.context, self._generator(PipelinePhase.DESIGN), **common)
        self.generate = GenerateService(
            self.context,
            self._generator(PipelinePhase.GENERATE),
            self.store,
            settings.bundles_container,
            image_generator=image_generator,
            generate_images=settings.generate_images,
            **common,
        )
        self.normalize = NormalizeService(self.context, case_logging=self.case_logging)
        self.validate = ValidateService(
            self.context, self._generator(PipelinePhase.VALIDATE), case_logging=self.case_logging
        )

        red_team_generator = self._generator(PipelinePhase.RED_TEAM)
        self.analyzer = RedTeamAnalyzer(
            red_team_generator,
            cache=self.cache,
            max_bytes_per_call=settings.red_team_max_bytes_per_call,
            max_parallel_calls=settings.red_team_max_parallel_calls,
            case_logging=self.case_logging,
        )
        self.gate = QualityGate(settings.quality_thresholds, generator=red_team_generator)
        self.editor = PrecisionEditor(self._generator(PipelinePhase.FIX), case_logging=self.case_logging)
        self.packager = CasePackager(self.context, self.store, settings.bundles_container)

        self._initialized = True
        logger.info(f"[orchestrator] Initialized with {settings.storage_backend} storage")

    async def shutdown(self) -> None:
        disconnect = getattr(self.cache, "disconnect", None)
        if disconnect is not None:
            await disconnect()
        self.tracing.shutdown()

    # ========================================================================
    # Run control
    # ========================================================================

    async def start(self, seed: CaseSeed, case_id: Optional[str] = None) -> str:
        """
        Register a new case from a seed.

        Returns:
            The case id (a uuid4 hex when none was given)
        """
        await self.initialize()
        case_id = case_id or uuid.uuid4().hex
        await self.context.save(case_id, SEED_PATH, seed)
        await self.state_machine.load_or_create(case_id)
        self.tracing.start_trace(case_id, metadata={"difficulty": seed.difficulty, "title": seed.title})
        logger.info(f"[start] Registered case {case_id}")
        return case_id

    async def advance(self, case_id: str) -> PipelineRun:
        """
        Execute the phase for the current state and move to the next state.

        A CaseGenError moves the run to Failed; the failure is recorded on
        the run rather than raised.
        """
        await self.initialize()
        run = await self.state_machine.load_or_create(case_id)
        if is_terminal(run.state):
            logger.info(f"[advance] Case {case_id} already in terminal state {run.state.value}")
            return run

        state = run.state
        try:
            async with self.tracing.span(case_id, state.value, metadata={"fix_iteration": run.fix_iteration}):
                run = await self._run_state(run)
        except CaseGenError as e:
            logger.error(f"[advance] {state.value} failed for case {case_id}: {e}")
            self.tracing.log_error(case_id, str(e), phase=state.value)
            run = await self.state_machine.fail(run, str(e))

        if is_terminal(run.state):
            self.tracing.end_trace(
                case_id, output={"state": run.state.value, "fix_iterations": run.fix_iteration, "error": run.last_error}
            )
        return run

    async def run(self, case_id: str) -> PipelineRun:
        """Advance until Done or Failed."""
        run = await self.advance(case_id)
        while not is_terminal(run.state):
            run = await self.advance(case_id)
        logger.info(f"[run] Case {case_id} finished in state {run.state.value}")
        return run

    async def generate_case(self, seed: CaseSeed, case_id: Optional[str] = None) -> PipelineRun:
        case_id = await self.start(seed, case_id)
        return await self.run(case_id)

    # ========================================================================
    # Phases
    # ========================================================================

    async def _run_state(self, run: PipelineRun) -> PipelineRun:
        case_id = run.case_id
        state = run.state
        transition = self.state_machine.transition

        if state == PipelineState.PLANNING:
            await self.plan.run(case_id)
            return await transition(run, PipelineState.EXPANDING)

        if state == PipelineState.EXPANDING:
            counts = await self.expand.run(case_id)
            return await transition(run, PipelineState.DESIGNING, note=json.dumps(counts))

        if state == PipelineState.DESIGNING:
            await self.visual_registry.design_registry(case_id)
            if await self._images_enabled(case_id):
                await self.visual_registry.generate_master_references(case_id)
            else:
                logger.info(f"[advance] Image generation disabled; skipping master references for case {case_id}")
            counts = await self.design.run(case_id)
            return await transition(run, PipelineState.GENERATING, note=json.dumps(counts))

        if state == PipelineState.GENERATING:
            self.generate.generate_images = await self._images_enabled(case_id)
            await self.generate.run(case_id)
            return await transition(run, PipelineState.NORMALIZING)

        if state == PipelineState.NORMALIZING:
            case = await self.normalize.run(case_id)
            return await transition(run, PipelineState.VALIDATING, note=f"{len(case.documents)} documents")

        if state == PipelineState.VALIDATING:
            report = await self.validate.run(case_id)
            return await transition(run, PipelineState.RED_TEAMING, note=f"passed={report.passed}")

        if state == PipelineState.RED_TEAMING:
            return await self._red_team(run)

        if state == PipelineState.FIXING:
            return await self._fix(run)

        if state == PipelineState.PACKAGING:
            manifest = await self.packager.package(case_id)
            return await transition(run, PipelineState.DONE, note=f"{len(manifest.files)} files")

        raise CaseGenError(f"No phase for state {state.value}", case_id=case_id)

    async def _images_enabled(self, case_id: str) -> bool:
        """Images are rendered only when both the settings and the seed allow it."""
        if not self.settings.generate_images:
            return False
        seed = await self.context.load(case_id, SEED_PATH, CaseSeed)
        return seed is None or seed.generate_images

    async def _red_team(self, run: PipelineRun) -> PipelineRun:
        case_id = run.case_id
        case = await self.context.require(case_id, CASE_PATH, NormalizedCase, phase="red_team")
        report = await self.analyzer.analyze(case_id, case, use_global=self.settings.use_global_red_team)
        await self.context.save(case_id, red_team_path(run.fix_iteration), report)

        verdict = await self.gate.evaluate(case_id, report)
        run.clean = verdict.clean
        next_state = self.state_machine.next_after_red_team(run, verdict.clean)
        note = f"high={report.high_priority_count} total={report.total_count}"
        if verdict.reasons:
            note += f" ({'; '.join(verdict.reasons)})"
        return await self.state_machine.transition(run, next_state, note=note)

    async def _fix(self, run: PipelineRun) -> PipelineRun:
        case_id = run.case_id
        case = await self.context.require(case_id, CASE_PATH, NormalizedCase, phase="fix")
        report = await self.context.require(case_id, red_team_path(run.fix_iteration), RedTeamReport, phase="fix")

        case_json = json.dumps(case.to_json_dict(), ensure_ascii=False)
        result = await self.editor.fix_case(case_id, report, case_json, iteration=run.fix_iteration + 1)

        note = f"applied={len(result.applied)} failed={len(result.failed)}"
        if result.changed:
            try:
                fixed = NormalizedCase.model_validate_json(result.case_json)
            except ValidationError as e:
                # Keep the pre-fix case
                logger.error(f"[fix] Edited case {case_id} no longer matches the case schema: {e}")
                note += " (reverted: invalid case)"
            else:
                await self.context.save(case_id, CASE_PATH, fixed)
        elif result.error:
            note += f" ({result.error})"

        await self.case_logging.log_step_metadata(
            case_id,
            f"fix_iteration_{run.fix_iteration + 1}",
            {"applied": result.applied, "failed": result.failed, "skipped": result.skipped, "error": result.error},
        )
        return await self.state_machine.transition(run, PipelineState.RED_TEAMING, note=note)


# ============================================================================
# Command line
# ============================================================================

async def main(argv: Optional[Any] = None) -> int:
    parser = argparse.ArgumentParser(description="Generate a detective case from a seed file.")
    parser.add_argument("seed", help="Path to a CaseSeed JSON file")
    parser.add_argument("--case-id", help="Resume or name a specific case")
    args = parser.parse_args(argv)

    with open(args.seed, "r", encoding="utf-8") as f:
        seed = CaseSeed.model_validate_json(f.read())

    orchestrator = CaseOrchestrator()
    try:
        await orchestrator.initialize()
        if args.case_id and await orchestrator.state_machine.load(args.case_id) is not None:
            run = await orchestrator.run(args.case_id)
        else:
            run = await orchestrator.generate_case(seed, args.case_id)
    finally:
        await orchestrator.shutdown()

    print(json.dumps({"caseId": run.case_id, "state": run.state.value, "error": run.last_error}))
    return 0 if run.state == PipelineState.DONE else 1


def cli() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
