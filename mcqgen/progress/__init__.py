"""Per-session progress publish/subscribe."""
from mcqgen.progress.channel import ProgressChannel

__all__ = ["ProgressChannel"]
