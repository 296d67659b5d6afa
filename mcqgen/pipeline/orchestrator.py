"""
Question generation pipeline.

Entry point for callers:

    pipeline = QuestionPipeline.from_settings()
    result = await pipeline.generate(GenerationRequest(topic="Acne vulgaris"))

Stages for one request:
1. Cache lookup (a hit returns immediately with cache_hit=True)
2. Context fetch through the variant's context provider
3. Refinement loop (draft -> validate -> score -> revise)
4. Cache write
5. Progress session closed with a `complete` or `error` event

The cache and the progress channel are side channels: their failures are
logged and never fail the request.
"""
from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping
from uuid import uuid4

from loguru import logger

from config import Settings, get_settings
from mcqgen.cache.result_cache import InMemoryResultCache, ResultCache, make_cache_key
from mcqgen.context.knowledge_base import KnowledgeBaseStore
from mcqgen.context.providers import KnowledgeBaseContextProvider, LiteratureContextProvider
from mcqgen.errors import GenerationError, PipelineError, PipelineErrorKind
from mcqgen.generation.drafting import DraftingAgent
from mcqgen.llm.gemini_client import GeminiClient, ModelClient
from mcqgen.models import (
    GenerationRequest,
    PipelineResult,
    PipelineVariant,
    ProgressEvent,
    ProgressStage,
    ProgressStatus,
)
from mcqgen.pipeline.refinement import RefinementController
from mcqgen.pipeline.variants import PipelineStrategy, build_strategies
from mcqgen.progress.channel import ProgressChannel
from mcqgen.quality.structural_validator import StructuralValidator


class QuestionPipeline:
    """Runs generation requests against a set of variant strategies."""

    def __init__(
        self,
        model_client: ModelClient,
        strategies: Mapping[PipelineVariant, PipelineStrategy],
        *,
        cache: ResultCache | None = None,
        progress: ProgressChannel | None = None,
        max_iterations: int = 5,
        pass_threshold: int = 20,
        stem_min_length: int = 100,
        raw_text_log_limit: int = 1000,
        difficulty_bucket_size: float = 0.1,
        model_timeout_ms: int | None = None,
        scoring_client: ModelClient | None = None,
    ):
        """
        Initialize the pipeline.

        Args:
            model_client: Client used by the drafting agent
            strategies: PipelineVariant -> PipelineStrategy registry
            cache: Result cache, or None to disable caching
            progress: Progress channel, or None to publish nowhere
            max_iterations: Default refinement budget (variants may lower it)
            pass_threshold: Rubric total needed for acceptance
            stem_min_length: Soft minimum vignette length for validation
            raw_text_log_limit: Raw text kept when logging empty responses
            difficulty_bucket_size: Bucket width used in cache keys
            model_timeout_ms: Per-call model timeout passed to drafting
            scoring_client: Client for model-graded scoring; None keeps the heuristic rubric
        """
        self.model_client = model_client
        self.strategies = dict(strategies)
        self.cache = cache
        self.progress = progress
        self.max_iterations = max_iterations
        self.pass_threshold = pass_threshold
        self.difficulty_bucket_size = difficulty_bucket_size
        self.model_timeout_ms = model_timeout_ms
        self.scoring_client = scoring_client

        self.validator = StructuralValidator(stem_min_length=stem_min_length)
        self.drafting_agent = DraftingAgent(model_client, raw_text_log_limit=raw_text_log_limit)

        # Resources created by from_settings() and released by close()
        self._owned_client: GeminiClient | None = None
        self._literature: LiteratureContextProvider | None = None
        self._kb_store: KnowledgeBaseStore | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        model_client: ModelClient | None = None,
    ) -> QuestionPipeline:
        """Wire the pipeline from configuration."""
        settings = settings or get_settings()

        owned_client = None
        if model_client is None:
            if not settings.has_gemini:
                raise PipelineError(
                    PipelineErrorKind.CONFIGURATION,
                    "GEMINI_API_KEY is not set",
                )
            owned_client = GeminiClient.from_settings(settings)
            model_client = owned_client

        literature = LiteratureContextProvider.from_settings(settings)
        kb_store = None
        kb_provider = None
        if settings.knowledge_base_path:
            kb_store = KnowledgeBaseStore(settings.knowledge_base_path).open()
            kb_provider = KnowledgeBaseContextProvider(kb_store, limit=settings.context_results_per_source)

        strategies = build_strategies(
            literature=literature,
            knowledge_base=kb_provider,
            primary_model=settings.ai_model,
            fast_model=settings.ai_fallback_model,
        )

        pipeline = cls(
            model_client,
            strategies,
            cache=InMemoryResultCache.from_settings(settings) if settings.cache_enabled else None,
            progress=ProgressChannel.from_settings(settings),
            max_iterations=settings.max_refinement_iterations,
            pass_threshold=settings.rubric_pass_threshold,
            stem_min_length=settings.stem_min_length,
            raw_text_log_limit=settings.raw_text_log_limit,
            difficulty_bucket_size=settings.difficulty_bucket_size,
            model_timeout_ms=settings.model_timeout_ms,
            scoring_client=model_client if settings.model_graded_scoring else None,
        )
        pipeline._owned_client = owned_client
        pipeline._literature = literature
        pipeline._kb_store = kb_store
        return pipeline

    async def close(self) -> None:
        """Release HTTP clients and the knowledge base opened by from_settings()."""
        if self._owned_client is not None:
            await self._owned_client.close()
        if self._literature is not None:
            await self._literature.close()
        if self._kb_store is not None:
            self._kb_store.close()

    async def __aenter__(self) -> QuestionPipeline:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def cache_key(self, request: GenerationRequest) -> str:
        return make_cache_key(request, self.difficulty_bucket_size)

    async def invalidate(self, request: GenerationRequest) -> bool:
        """Drop the cached result for a request, if any."""
        if self.cache is None:
            return False
        return await self.cache.invalidate(self.cache_key(request))

    async def generate(
        self,
        request: GenerationRequest,
        session_id: str | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
        timeout_s: float | None = None,
    ) -> PipelineResult:
        """
        Generate a question for the request.

        Args:
            request: Topic, difficulty, variant, and cache preference
            session_id: Progress session to publish on; generated if omitted
            cancel_event: Setting this event cancels the run
            timeout_s: Cancel the run after this many seconds

        Returns:
            PipelineResult, accepted or best-of on budget exhaustion

        Raises:
            ModelError: Model failure before any valid draft existed
            PipelineError: Cancelled, misconfigured, or no usable draft
        """
        session_id = session_id or str(uuid4())
        run = asyncio.ensure_future(self._run(request, session_id))
        waiters: set[asyncio.Future] = {run}
        cancel_waiter = None
        if cancel_event is not None:
            cancel_waiter = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout_s, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            run.cancel()
            self._publish(session_id, ProgressStage.ERROR, ProgressStatus.ERROR, "Generation cancelled by caller")
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if run in done:
            return run.result()

        run.cancel()
        await asyncio.gather(run, return_exceptions=True)
        reason = "cancel signal received" if cancel_event is not None and cancel_event.is_set() else (
            f"timed out after {timeout_s:g}s"
        )
        logger.warning(f"Generation for {request.topic!r} cancelled: {reason} (session {session_id})")
        self._publish(session_id, ProgressStage.ERROR, ProgressStatus.ERROR, f"Generation cancelled: {reason}")
        raise PipelineError(
            PipelineErrorKind.CANCELLED,
            f"Generation cancelled: {reason}",
            session_id=session_id,
        )

    async def _run(self, request: GenerationRequest, session_id: str) -> PipelineResult:
        started = time.monotonic()

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        strategy: PipelineStrategy | None = self.strategies.get(request.variant)
        if strategy is None:
            error = PipelineError(
                PipelineErrorKind.CONFIGURATION,
                f"No strategy registered for variant {request.variant.value}",
                session_id=session_id,
            )
            self._publish(session_id, ProgressStage.ERROR, ProgressStatus.ERROR, str(error))
            raise error

        self._publish(
            session_id, ProgressStage.INIT, ProgressStatus.RUNNING,
            f"{request.topic} ({request.variant.value}, difficulty {request.difficulty:.2f})",
        )

        cache_key = None
        if request.use_cache and self.cache is not None:
            cache_key = self.cache_key(request)
            cached = await self._cache_get(cache_key)
            if cached is not None:
                cached.cache_hit = True
                cached.session_id = session_id
                cached.total_duration_ms = elapsed_ms()
                self._publish(session_id, ProgressStage.INIT, ProgressStatus.COMPLETE, "Cache hit")
                self._publish(session_id, ProgressStage.COMPLETE, ProgressStatus.COMPLETE, "Served from cache")
                logger.info(f"Served {request.topic!r} from cache (session {session_id})")
                return cached
        self._publish(session_id, ProgressStage.INIT, ProgressStatus.COMPLETE, None)

        self._publish(session_id, ProgressStage.CONTEXT, ProgressStatus.RUNNING, None)
        context = await strategy.context_provider.fetch_context(request.topic)
        context_message = f"{len(context.snippets)} snippets from {len(context.sources)} sources"
        if context.errors:
            context_message += f"; failed: {', '.join(sorted(context.errors))}"
        self._publish(session_id, ProgressStage.CONTEXT, ProgressStatus.COMPLETE, context_message)

        controller = RefinementController(
            self.drafting_agent,
            self.validator,
            strategy.build_scorer(self.pass_threshold, self.scoring_client),
            max_iterations=min(self.max_iterations, strategy.max_iterations or self.max_iterations),
            pass_threshold=self.pass_threshold,
            template=strategy.template,
            completion_options=strategy.completion_options(self.model_timeout_ms),
            on_progress=lambda stage, status, message, iteration: self._publish(
                session_id, stage, status, message, iteration
            ),
        )
        try:
            outcome = await controller.run(request, context)
        except GenerationError as e:
            self._publish(session_id, ProgressStage.ERROR, ProgressStatus.ERROR, str(e))
            raise

        result = PipelineResult(
            final_draft=outcome.final_draft,
            iterations=outcome.iterations,
            accepted=outcome.accepted,
            cache_hit=False,
            session_id=session_id,
            variant=request.variant,
            terminal_state=outcome.terminal_state,
            error=outcome.error,
        )

        if cache_key is not None and outcome.error is None:
            self._publish(session_id, ProgressStage.SAVE, ProgressStatus.RUNNING, None)
            saved = await self._cache_put(cache_key, result)
            self._publish(
                session_id, ProgressStage.SAVE,
                ProgressStatus.COMPLETE if saved else ProgressStatus.ERROR,
                "Cached result" if saved else "Cache write failed",
            )
        else:
            self._publish(session_id, ProgressStage.SAVE, ProgressStatus.SKIPPED, None)

        result.total_duration_ms = elapsed_ms()
        self._publish(
            session_id, ProgressStage.COMPLETE, ProgressStatus.COMPLETE,
            f"accepted={result.accepted} iterations={len(result.iterations)} "
            f"state={result.terminal_state.value}",
        )
        logger.info(
            f"Generated {request.topic!r}: accepted={result.accepted} "
            f"iterations={len(result.iterations)} in {result.total_duration_ms}ms"
        )
        return result

    async def _cache_get(self, key: str) -> PipelineResult | None:
        try:
            return await self.cache.get(key)
        except Exception as e:
            logger.warning(f"Cache read failed for {key[:12]}: {e}")
            return None

    async def _cache_put(self, key: str, result: PipelineResult) -> bool:
        try:
            await self.cache.put(key, result)
        except Exception as e:
            logger.warning(f"Cache write failed for {key[:12]}: {e}")
            return False
        return True

    def _publish(
        self,
        session_id: str,
        stage: ProgressStage,
        status: ProgressStatus,
        message: str | None,
        iteration: int | None = None,
    ):
        if self.progress is None:
            return
        try:
            self.progress.publish(
                session_id,
                ProgressEvent(
                    session_id=session_id,
                    stage=stage,
                    status=status,
                    message=message,
                    iteration=iteration,
                ),
            )
        except Exception as e:
            logger.warning(f"Progress publish failed for session {session_id}: {e}")
