"""Context window management and optional turn persistence."""

from chatline.core.memory.trimmer import ContextTrimmer

__all__ = ["ContextTrimmer"]
