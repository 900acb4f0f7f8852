from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from ideaintake.config import settings
from ideaintake.deps import init_db
from ideaintake.errors import AuthorizationError, ConflictError, NotFoundError
from ideaintake.logging_config import setup_logging
from ideaintake.models import STAGE_ORDER
from ideaintake.routers import chat, finalize, history
from ideaintake.services.finalizer import IdeaCardExtract

logger = setup_logging()

@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("Idea intake service ready")
    yield

app = FastAPI(title="Idea Intake Service", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Conversation-Stage", "X-Previous-Stage"],
)

@app.exception_handler(NotFoundError)
async def not_found(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": f"{exc.kind} not found"})

@app.exception_handler(AuthorizationError)
async def forbidden(request: Request, exc: AuthorizationError):
    return JSONResponse(status_code=403, content={"detail": "Unauthorized"})

@app.exception_handler(ConflictError)
async def conflict(request: Request, exc: ConflictError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})

@app.get("/healthz")
def healthz():
    return {"status": "ok"}

# history and finalize before chat: chat owns the /{conversation_id} catch-all
app.include_router(history.router, prefix="/chat", tags=["history"])
app.include_router(finalize.router, prefix="/chat", tags=["finalize"])
app.include_router(chat.router, prefix="/chat", tags=["chat"])

@app.get("/schemas", tags=["meta"])
def get_schemas():
    return {
        "stages": [s.value for s in STAGE_ORDER],
        "idea_card": IdeaCardExtract.model_json_schema(),
    }
