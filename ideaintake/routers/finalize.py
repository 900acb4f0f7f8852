import logging
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from ideaintake.auth import Identity
from ideaintake.deps import get_current_user, get_finalizer
from ideaintake.errors import AuthorizationError
from ideaintake.services.finalizer import EventKind

logger = logging.getLogger(__name__)

router = APIRouter()

class FinalizePayload(BaseModel):
    conversationId: str

async def _finalize_text(finalizer, conversation_id: str, user_id: str):
    try:
        async for event in finalizer.stream(conversation_id, user_id):
            if event.kind is EventKind.PROGRESS:
                yield event.text + "\n"
            elif event.kind is EventKind.THOUGHT:
                yield "THINKING:" + " ".join(event.text.splitlines()) + "\n"
            elif event.kind is EventKind.DONE:
                yield f"REQUEST_ID:{event.request_id}"
    except AuthorizationError:
        yield "ERROR:Unauthorized"
    except Exception:
        logger.exception("Error in streaming finalization of %s", conversation_id)
        yield "ERROR:Internal error processing your request. Please try again.\n"

@router.post("/finalize")
async def finalize_stream(payload: FinalizePayload, user: Identity = Depends(get_current_user),
                          finalizer=Depends(get_finalizer)):
    return StreamingResponse(_finalize_text(finalizer, payload.conversationId, user.uid),
                             media_type="text/plain; charset=utf-8",
                             headers={"Cache-Control": "no-cache"})

@router.post("/complete")
async def finalize_sync(payload: FinalizePayload, user: Identity = Depends(get_current_user),
                        finalizer=Depends(get_finalizer)):
    result = await finalizer.finalize(payload.conversationId, user.uid)
    return {"success": True, "requestId": result.request_id, "outcome": result.outcome.value}
