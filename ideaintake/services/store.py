"""Document store over SQLModel.

Every mutation is a whole-document write. Session work is blocking, so each
public coroutine hands it to the threadpool instead of running it on the
event loop.
"""
import asyncio
import logging
from typing import List, Optional, Type, TypeVar

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlmodel import SQLModel, Session, select

from ideaintake.models import DraftConversation, FinalRequest, UserProfile

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=SQLModel)


class DocumentStore:
    def __init__(self, engine, max_batch_size: int = 500):
        self.engine = engine
        self.max_batch_size = max_batch_size

    # -- sync primitives, always called through run_in_threadpool --

    def _get(self, model: Type[T], key: str) -> Optional[T]:
        with Session(self.engine) as session:
            obj = session.get(model, key)
            if obj is not None:
                session.expunge(obj)
            return obj

    def _merge(self, obj: T) -> T:
        with Session(self.engine) as session:
            merged = session.merge(obj)
            session.commit()
            session.refresh(merged)
            session.expunge(merged)
            return merged

    def _put(self, obj: T) -> T:
        try:
            return self._merge(obj)
        except IntegrityError:
            # lost an insert race on the same key; the row exists now, so this merge updates it
            logger.info("Concurrent insert on %s %s, retrying as update", type(obj).__name__, obj.id)
            return self._merge(obj)

    def _delete_where(self, model, clause) -> int:
        # statement-level delete: deleting an already-gone row is a no-op, not an error
        with Session(self.engine) as session:
            result = session.connection().execute(delete(model).where(clause))
            session.commit()
            return result.rowcount or 0

    def _delete(self, model: Type[T], key: str) -> bool:
        return self._delete_where(model, model.id == key) > 0

    def _query_by_owner(self, model, owner_id: str, limit: Optional[int]) -> list:
        with Session(self.engine) as session:
            stmt = select(model).where(model.owner_id == owner_id).order_by(model.updated_at.desc())
            if limit is not None:
                stmt = stmt.limit(limit)
            rows = list(session.exec(stmt).all())
            for row in rows:
                session.expunge(row)
            return rows

    def _delete_batch(self, model, keys: List[str]) -> int:
        return self._delete_where(model, model.id.in_(keys))

    # -- drafts --

    async def get_draft(self, conversation_id: str) -> Optional[DraftConversation]:
        return await run_in_threadpool(self._get, DraftConversation, conversation_id)

    async def put_draft(self, draft: DraftConversation) -> DraftConversation:
        return await run_in_threadpool(self._put, draft)

    async def delete_draft(self, conversation_id: str) -> bool:
        return await run_in_threadpool(self._delete, DraftConversation, conversation_id)

    async def list_drafts(self, owner_id: str, limit: Optional[int] = None) -> List[DraftConversation]:
        return await run_in_threadpool(self._query_by_owner, DraftConversation, owner_id, limit)

    async def delete_drafts(self, keys: List[str]) -> int:
        """Delete drafts in batches of at most ``max_batch_size``; batches run concurrently."""
        if not keys:
            return 0
        batches = [keys[i:i + self.max_batch_size] for i in range(0, len(keys), self.max_batch_size)]
        counts = await asyncio.gather(
            *(run_in_threadpool(self._delete_batch, DraftConversation, batch) for batch in batches)
        )
        logger.info("Deleted %d drafts in %d batch(es)", sum(counts), len(batches))
        return sum(counts)

    # -- final requests --

    async def get_request(self, request_id: str) -> Optional[FinalRequest]:
        return await run_in_threadpool(self._get, FinalRequest, request_id)

    async def put_request(self, request: FinalRequest) -> FinalRequest:
        return await run_in_threadpool(self._put, request)

    async def list_requests(self, owner_id: str, limit: Optional[int] = None) -> List[FinalRequest]:
        return await run_in_threadpool(self._query_by_owner, FinalRequest, owner_id, limit)

    # -- profiles (read-only here) --

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        return await run_in_threadpool(self._get, UserProfile, user_id)

    async def put_profile(self, profile: UserProfile) -> UserProfile:
        return await run_in_threadpool(self._put, profile)
