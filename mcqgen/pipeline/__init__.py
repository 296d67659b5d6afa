"""Pipeline orchestration: variants, refinement loop, and the generate() entry point."""
from mcqgen.pipeline.orchestrator import QuestionPipeline
from mcqgen.pipeline.refinement import RefinementController, RefinementOutcome, RefinementState
from mcqgen.pipeline.variants import PipelineStrategy, build_strategies

__all__ = [
    "PipelineStrategy",
    "QuestionPipeline",
    "RefinementController",
    "RefinementOutcome",
    "RefinementState",
    "build_strategies",
]
