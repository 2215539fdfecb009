"""
Orchestration State Machine for CaseGen

Explicit transition table over PipelineState. The run state lives at
state/pipeline in the Context Manager and is written after every transition,
so any process can load it and resume.

Key concepts:
- Linear phases Planning -> ... -> RedTeaming
- RedTeaming -> Packaging when clean or the fix cap is reached, else Fixing
- Fixing -> RedTeaming (each pass through Fixing counts one iteration)
- Any non-terminal state may move to Failed; Done and Failed are terminal
"""

import logging
from typing import Dict, Optional, Set

from .context_manager import ContextManager
from .errors import InvalidTransitionError
from ..models.schemas import PipelineRun, PipelineState, StateTransition

logger = logging.getLogger("casegen")

STATE_PATH = "state/pipeline"

TRANSITIONS: Dict[PipelineState, Set[PipelineState]] = {
    PipelineState.PLANNING: {PipelineState.EXPANDING},
    PipelineState.EXPANDING: {PipelineState.DESIGNING},
    PipelineState.DESIGNING: {PipelineState.GENERATING},
    PipelineState.GENERATING: {PipelineState.NORMALIZING},
    PipelineState.NORMALIZING: {PipelineState.VALIDATING},
    PipelineState.VALIDATING: {PipelineState.RED_TEAMING},
    PipelineState.RED_TEAMING: {PipelineState.FIXING, PipelineState.PACKAGING},
    PipelineState.FIXING: {PipelineState.RED_TEAMING},
    PipelineState.PACKAGING: {PipelineState.DONE},
    PipelineState.DONE: set(),
    PipelineState.FAILED: set(),
}

TERMINAL_STATES = {PipelineState.DONE, PipelineState.FAILED}


def is_terminal(state: PipelineState) -> bool:
    return state in TERMINAL_STATES


def can_transition(from_state: PipelineState, to_state: PipelineState) -> bool:
    if to_state == PipelineState.FAILED:
        return not is_terminal(from_state)
    return to_state in TRANSITIONS[from_state]


class PipelineStateMachine:
    """Loads, advances and persists the run state of one case."""

    def __init__(self, context: ContextManager, max_fix_iterations: int = 3):
        self.context = context
        self.max_fix_iterations = max_fix_iterations

    async def load(self, case_id: str) -> Optional[PipelineRun]:
        return await self.context.load(case_id, STATE_PATH, PipelineRun)

    async def load_or_create(self, case_id: str) -> PipelineRun:
        """Resume an existing run or start a new one in Planning."""
        run = await self.load(case_id)
        if run is not None:
            logger.info(f"[state_machine] Resuming case {case_id} in state {run.state.value}")
            return run
        run = PipelineRun(case_id=case_id, max_fix_iterations=self.max_fix_iterations)
        await self.context.save(case_id, STATE_PATH, run)
        logger.info(f"[state_machine] Started case {case_id} in state {run.state.value}")
        return run

    async def transition(
        self,
        run: PipelineRun,
        to_state: PipelineState,
        note: Optional[str] = None,
        error: Optional[str] = None,
    ) -> PipelineRun:
        """
        Move the run to a new state and persist it.

        Raises:
            InvalidTransitionError: the move is not in the transition table
        """
        from_state = run.state
        if not can_transition(from_state, to_state):
            raise InvalidTransitionError(
                f"Illegal transition {from_state.value} -> {to_state.value}",
                case_id=run.case_id,
                phase=from_state.value,
            )

        if from_state == PipelineState.FIXING:
            run.fix_iteration += 1
        run.state = to_state
        run.history.append(StateTransition(from_state=from_state, to_state=to_state, note=note))
        if error is not None:
            run.last_error = error

        await self.context.save(run.case_id, STATE_PATH, run)
        logger.info(f"[state_machine] Case {run.case_id}: {from_state.value} -> {to_state.value}")
        return run

    def next_after_red_team(self, run: PipelineRun, clean: bool) -> PipelineState:
        """Packaging when clean or out of fix iterations, Fixing otherwise."""
        if clean:
            return PipelineState.PACKAGING
        if run.fix_iteration >= run.max_fix_iterations:
            logger.warning(
                f"[state_machine] Case {run.case_id} not clean after {run.fix_iteration} fix iterations; packaging anyway"
            )
            return PipelineState.PACKAGING
        return PipelineState.FIXING

    async def fail(self, run: PipelineRun, error: str) -> PipelineRun:
        return await self.transition(run, PipelineState.FAILED, note="failed", error=error)
