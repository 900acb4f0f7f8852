from sqlmodel import SQLModel, create_engine
from ideaintake.auth import Identity, InvalidToken, StaticTokenVerifier, bearer_token
from ideaintake.config import settings
from ideaintake.services.criterion_checker import CriterionChecker
from ideaintake.services.draft_gc import DraftCollector
from ideaintake.services.finalizer import FinalizationEngine
from ideaintake.services.llm import build_llm
from ideaintake.services.profiles import ProfileCache
from ideaintake.services.store import DocumentStore
from ideaintake.services.turns import TurnGuard, TurnOrchestrator
from fastapi import Depends, Header, HTTPException
from typing import Optional
import os

if settings.DB_URL.startswith("sqlite:///./") and not os.path.exists(settings.DATA_DIR):
    os.makedirs(settings.DATA_DIR, exist_ok=True)
engine = create_engine(settings.DB_URL, echo=False,
                       connect_args={"check_same_thread": False} if settings.DB_URL.startswith("sqlite") else {})

_store = DocumentStore(engine, max_batch_size=settings.STORE_MAX_BATCH_SIZE)
_llm = build_llm(settings)
_profiles = ProfileCache(_store, ttl_seconds=settings.PROFILE_CACHE_TTL_SECONDS)
_guard = TurnGuard()
_verifier = StaticTokenVerifier(settings.API_TOKENS)

def init_db(bind=None):
    SQLModel.metadata.create_all(bind or engine)

def get_store() -> DocumentStore:
    return _store

def get_llm():
    return _llm

def get_verifier():
    return _verifier

def get_profiles() -> ProfileCache:
    return _profiles

def get_guard() -> TurnGuard:
    return _guard

def get_orchestrator(store=Depends(get_store), llm=Depends(get_llm), profiles=Depends(get_profiles),
                     guard=Depends(get_guard)) -> TurnOrchestrator:
    return TurnOrchestrator(store, llm, CriterionChecker(llm), profiles, guard=guard, settings=settings)

def get_finalizer(store=Depends(get_store), llm=Depends(get_llm)) -> FinalizationEngine:
    return FinalizationEngine(store, llm, settings=settings)

def get_collector(store=Depends(get_store)) -> DraftCollector:
    return DraftCollector(store, retention_seconds=settings.DRAFT_RETENTION_SECONDS,
                          max_messages=settings.EMPTY_DRAFT_MAX_MESSAGES)

async def get_current_user(authorization: Optional[str] = Header(None),
                           verifier=Depends(get_verifier)) -> Identity:
    token = bearer_token(authorization)
    try:
        return await verifier.verify(token)
    except InvalidToken:
        raise HTTPException(status_code=401, detail="Invalid credentials")
