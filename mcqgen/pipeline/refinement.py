"""
Refinement controller.

The iteration state machine for one request:

    INIT -> DRAFTING -> VALIDATING -> SCORING -> ACCEPTED
                            |            |
                            +-> REVISING <+      (back to DRAFTING)

    terminal: ACCEPTED | MAX_ITERATIONS_EXCEEDED | ERROR

- An invalid draft skips scoring; the next round's trigger is its first
  validation error.
- A scored draft below the pass threshold triggers a revision aimed at its
  lowest-scoring rubric dimension.
- Revisions re-draft with the full iteration history in the prompt.
- A response missing its vignette, options, or rationale is a failed
  iteration. It is never scored and still counts against the budget.
- On exhaustion the best-scoring iteration is returned (ties go to the
  earliest), with accepted=False.
- A model failure aborts the run. It propagates while no structurally
  valid draft exists; afterwards the best valid draft is returned instead.

Instances are single-use: one controller per request.
"""
from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from mcqgen.errors import ModelError, PipelineError, PipelineErrorKind, SemanticEmptinessError
from mcqgen.generation.drafting import DraftingAgent
from mcqgen.generation.prompts import BOARD_STYLE_TEMPLATE, PromptTemplate
from mcqgen.llm.gemini_client import CompletionOptions
from mcqgen.models import (
    DraftQuestion,
    GenerationRequest,
    IterationRecord,
    ProgressStage,
    ProgressStatus,
    ResearchContext,
    RubricScore,
    TerminalState,
    ValidationResult,
)
from mcqgen.quality.rubric_scorer import DIMENSIONS, QuestionScorer, RubricScorer
from mcqgen.quality.structural_validator import StructuralValidator

# (stage, status, message, iteration)
ProgressCallback = Callable[[ProgressStage, ProgressStatus, str | None, int | None], None]

INITIAL_TRIGGER = "initial draft"
EMPTY_RESPONSE_TRIGGER = "previous response was missing its vignette, options, or rationale"


class RefinementState(str, Enum):
    INIT = "init"
    DRAFTING = "drafting"
    VALIDATING = "validating"
    SCORING = "scoring"
    REVISING = "revising"
    ACCEPTED = "accepted"
    MAX_ITERATIONS_EXCEEDED = "max_iterations_exceeded"
    ERROR = "error"


TERMINAL_STATES = frozenset(
    {RefinementState.ACCEPTED, RefinementState.MAX_ITERATIONS_EXCEEDED, RefinementState.ERROR}
)


@dataclass
class RefinementOutcome:
    """What a finished run hands back to the pipeline."""

    final_draft: DraftQuestion
    iterations: list[IterationRecord] = field(default_factory=list)
    accepted: bool = False
    terminal_state: TerminalState = TerminalState.MAX_ITERATIONS_EXCEEDED
    error: str | None = None


def select_best(records: list[IterationRecord]) -> IterationRecord:
    """Highest rubric total; the earliest iteration wins ties."""
    if not records:
        raise ValueError("No iterations to choose from")
    return max(records, key=lambda record: (record.rubric.total, -record.index))


class RefinementController:
    """Bounded draft -> validate -> score -> revise loop for one request."""

    def __init__(
        self,
        drafting_agent: DraftingAgent,
        validator: StructuralValidator | None = None,
        scorer: QuestionScorer | None = None,
        *,
        max_iterations: int = 5,
        pass_threshold: int = 20,
        template: PromptTemplate = BOARD_STYLE_TEMPLATE,
        completion_options: CompletionOptions | None = None,
        on_progress: ProgressCallback | None = None,
    ):
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.drafting_agent = drafting_agent
        self.validator = validator or StructuralValidator()
        self.scorer = scorer or RubricScorer(pass_threshold=pass_threshold)
        self.max_iterations = max_iterations
        self.pass_threshold = pass_threshold
        self.template = template
        self.completion_options = completion_options
        self.on_progress = on_progress

        self.state = RefinementState.INIT
        self.transitions: list[RefinementState] = [RefinementState.INIT]
        self.records: list[IterationRecord] = []
        self._empty_iterations: set[int] = set()

    async def run(self, request: GenerationRequest, context: ResearchContext) -> RefinementOutcome:
        """
        Iterate until a draft passes or the budget runs out.

        Raises:
            ModelError: Model failure before any structurally valid draft existed
            PipelineError: Every iteration came back semantically empty
        """
        if self.state is not RefinementState.INIT:
            raise RuntimeError("RefinementController instances are single-use")

        try:
            return await self._iterate(request, context)
        except asyncio.CancelledError:
            if self.state not in TERMINAL_STATES:
                self._transition(RefinementState.ERROR)
            raise

    async def _iterate(self, request: GenerationRequest, context: ResearchContext) -> RefinementOutcome:
        trigger = INITIAL_TRIGGER

        for index in range(1, self.max_iterations + 1):
            started = time.monotonic()
            self._transition(RefinementState.DRAFTING)
            self._notify(ProgressStage.DRAFT, ProgressStatus.RUNNING, f"Drafting attempt {index}", index)

            empty_error: SemanticEmptinessError | None = None
            try:
                draft = await self.drafting_agent.draft(
                    request,
                    context,
                    template=self.template,
                    options=self.completion_options,
                    history=tuple(self.records),
                )
            except SemanticEmptinessError as e:
                draft = e.draft
                empty_error = e
                self._empty_iterations.add(index)
                self._notify(ProgressStage.DRAFT, ProgressStatus.ERROR, str(e), index)
            except ModelError as e:
                e.iteration = index
                self._notify(ProgressStage.DRAFT, ProgressStatus.ERROR, str(e), index)
                return self._abort(e)
            else:
                self._notify(ProgressStage.DRAFT, ProgressStatus.COMPLETE, None, index)

            self._transition(RefinementState.VALIDATING)
            validation = self.validator.validate(draft)
            if empty_error is not None:
                # Never scored, even when the partial draft is structurally sound
                validation = ValidationResult(
                    is_valid=False,
                    errors=(f"EMPTY_RESPONSE: {empty_error}",) + validation.errors,
                    warnings=validation.warnings,
                    score=validation.score,
                )

            if validation.is_valid:
                self._notify(
                    ProgressStage.VALIDATE, ProgressStatus.COMPLETE,
                    f"Structure score {validation.score}/100", index,
                )
                self._transition(RefinementState.SCORING)
                rubric = await self.scorer.score(draft, context)
                weakest = rubric.weakest_dimension
                next_trigger = (
                    f"lowest rubric dimension: {weakest} ({rubric.dimensions.get(weakest, 0)}/5)"
                )
                self._notify(
                    ProgressStage.SCORE, ProgressStatus.COMPLETE,
                    f"Rubric {rubric.total}/25 (threshold {rubric.threshold})", index,
                )
            else:
                rubric = RubricScore.not_scored(list(DIMENSIONS), self.pass_threshold)
                next_trigger = (
                    EMPTY_RESPONSE_TRIGGER if index in self._empty_iterations else validation.errors[0]
                )
                self._notify(ProgressStage.VALIDATE, ProgressStatus.ERROR, validation.errors[0], index)
                self._notify(ProgressStage.SCORE, ProgressStatus.SKIPPED, "Invalid draft not scored", index)

            record = IterationRecord(
                index=index,
                draft=draft,
                validation=validation,
                rubric=rubric,
                trigger=trigger,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            self.records.append(record)
            logger.info(
                f"Iteration {index}/{self.max_iterations} for {request.topic!r}: "
                f"valid={validation.is_valid} structure={validation.score} "
                f"rubric={rubric.total}/25 passed={rubric.passed}"
            )

            if rubric.passed:
                self._transition(RefinementState.ACCEPTED)
                return RefinementOutcome(
                    final_draft=draft,
                    iterations=list(self.records),
                    accepted=True,
                    terminal_state=TerminalState.ACCEPTED,
                )

            if index < self.max_iterations:
                self._transition(RefinementState.REVISING)
                self._notify(ProgressStage.REFINE, ProgressStatus.RUNNING, f"Revising: {next_trigger}", index)
            trigger = next_trigger

        return self._exhausted(request)

    def _exhausted(self, request: GenerationRequest) -> RefinementOutcome:
        self._transition(RefinementState.MAX_ITERATIONS_EXCEEDED)
        if len(self._empty_iterations) == len(self.records):
            raise PipelineError(
                PipelineErrorKind.NO_USABLE_DRAFT,
                f"All {len(self.records)} responses for {request.topic!r} were semantically empty",
            )

        best = select_best(self.records)
        logger.warning(
            f"No draft for {request.topic!r} passed within {self.max_iterations} iterations; "
            f"returning iteration {best.index} (rubric {best.rubric.total}/25)"
        )
        self._notify(
            ProgressStage.REFINE, ProgressStatus.COMPLETE,
            f"Budget exhausted; best attempt was {best.index}", best.index,
        )
        return RefinementOutcome(
            final_draft=best.draft,
            iterations=list(self.records),
            accepted=False,
            terminal_state=TerminalState.MAX_ITERATIONS_EXCEEDED,
        )

    def _abort(self, error: ModelError) -> RefinementOutcome:
        self._transition(RefinementState.ERROR)
        valid = [record for record in self.records if record.validation.is_valid]
        if not valid:
            logger.error(f"Model failure on iteration {error.iteration} with no valid draft: {error}")
            raise error

        best = select_best(valid)
        logger.warning(
            f"Model failure on iteration {error.iteration}; returning iteration {best.index} "
            f"(rubric {best.rubric.total}/25): {error}"
        )
        return RefinementOutcome(
            final_draft=best.draft,
            iterations=list(self.records),
            accepted=False,
            terminal_state=TerminalState.ERROR,
            error=f"iteration {error.iteration}: {error}",
        )

    def _transition(self, state: RefinementState):
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"Cannot leave terminal state {self.state.value}")
        logger.debug(f"Refinement {self.state.value} -> {state.value}")
        self.state = state
        self.transitions.append(state)

    def _notify(self, stage: ProgressStage, status: ProgressStatus, message: str | None, iteration: int | None):
        if self.on_progress is not None:
            self.on_progress(stage, status, message, iteration)
