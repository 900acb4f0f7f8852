import asyncio
import logging
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from ideaintake.auth import Identity
from ideaintake.config import settings
from ideaintake.deps import get_collector, get_current_user, get_store
from ideaintake.services.draft_gc import is_empty
from ideaintake.services.history import merge_history, summarize_draft, summarize_request

logger = logging.getLogger(__name__)

router = APIRouter()

async def _collect_empty_drafts(collector, user_id: str):
    try:
        await collector.collect(user_id)
    except Exception:
        # best-effort; the next listing tries again
        logger.exception("Failed to clean up empty drafts for %s", user_id)

@router.get("/history")
async def chat_history(background_tasks: BackgroundTasks,
                       limit: int = Query(settings.HISTORY_DEFAULT_LIMIT, ge=1, le=100),
                       cleanup: bool = True,
                       user: Identity = Depends(get_current_user),
                       store=Depends(get_store), collector=Depends(get_collector)):
    drafts, requests = await asyncio.gather(store.list_drafts(user.uid, limit), store.list_requests(user.uid, limit))
    visible, empty = [], 0
    for d in drafts:
        try:
            if is_empty(d, settings.EMPTY_DRAFT_MAX_MESSAGES):
                empty += 1
                continue
            visible.append(summarize_draft(d))
        except ValueError as e:
            logger.warning("Skipping unreadable draft %s: %s", d.id, e)
    submitted = [summarize_request(r) for r in requests]
    if cleanup:
        background_tasks.add_task(_collect_empty_drafts, collector, user.uid)
    return {
        "history": merge_history(visible, submitted, limit),
        "totalDrafts": len(visible),
        "totalSubmitted": len(submitted),
        "emptyDraftsFound": empty,
    }
