import logging
from typing import Iterable, List, Optional

from ideaintake.models import DraftConversation, Role, Stage, now_ms
from ideaintake.services.state_machine import migrate_state

logger = logging.getLogger(__name__)


def has_user_content(draft: DraftConversation) -> bool:
    return any(m.get("role") == Role.USER.value for m in draft.messages or [])


def is_empty(draft: DraftConversation, max_messages: int = 3) -> bool:
    """Only the welcome message was ever exchanged."""
    if has_user_content(draft):
        return False
    return migrate_state(draft.state).stage is Stage.INIT and len(draft.messages or []) < max_messages


class DraftCollector:
    def __init__(self, store, retention_seconds: int = 7200, max_messages: int = 3):
        self.store = store
        self.retention_ms = retention_seconds * 1000
        self.max_messages = max_messages

    def candidates(self, drafts: Iterable[DraftConversation], now: Optional[int] = None) -> List[str]:
        cutoff = (now if now is not None else now_ms()) - self.retention_ms
        doomed = []
        for d in drafts:
            if d.created_at >= cutoff:
                continue
            try:
                if is_empty(d, self.max_messages):
                    doomed.append(d.id)
            except ValueError as e:
                # unreadable state is never treated as empty
                logger.warning("Skipping unreadable draft %s: %s", d.id, e)
        return doomed

    async def collect(self, user_id: str, now: Optional[int] = None) -> List[str]:
        drafts = await self.store.list_drafts(user_id)
        doomed = self.candidates(drafts, now)
        if doomed:
            await self.store.delete_drafts(doomed)
            logger.info("Cleaned up %d empty draft conversations for %s", len(doomed), user_id)
        return doomed
