"""Session store and idle reaper.

Conversations live in memory keyed by conversation id; the reaper evicts
the ones that have been idle longer than the store's timeout.
"""

from chatline.core.session.reaper import SessionReaper
from chatline.core.session.store import SessionStore

__all__ = ["SessionStore", "SessionReaper"]
