from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON
from pydantic import BaseModel, ConfigDict
from typing import Optional, Dict, Any, List
from enum import Enum
import time
import uuid

def now_ms() -> int:
    return int(time.time() * 1000)


class Stage(str, Enum):
    INIT = "init"
    DESCRIPTION = "description"
    DETAILS = "details"
    ATTACHMENTS = "attachments"
    SUMMARY = "summary"
    SUBMIT = "submit"

    @property
    def order(self) -> int:
        return STAGE_ORDER.index(self)

    @property
    def is_terminal(self) -> bool:
        return self is Stage.SUBMIT

    def next(self) -> Optional["Stage"]:
        i = self.order
        return STAGE_ORDER[i + 1] if i + 1 < len(STAGE_ORDER) else None


STAGE_ORDER: List[Stage] = list(Stage)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class RequestStatus(str, Enum):
    NEW = "new"
    IN_REVIEW = "in_review"
    PILOT = "pilot"
    COMPLETED = "completed"
    REJECTED = "rejected"


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)
    role: Role
    content: str
    timestamp: int

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content, timestamp=now_ms())

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=Role.ASSISTANT, content=content, timestamp=now_ms())


class Attachment(BaseModel):
    url: str
    name: str
    type: Optional[str] = None
    thumbnailUrl: Optional[str] = None


class ConversationState(BaseModel):
    stage: Stage = Stage.INIT
    collectedData: Dict[str, Any] = {}
    language: str = "en"


# Tables

class DraftConversation(SQLModel, table=True):
    __tablename__ = "conversations"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    owner_id: str = Field(index=True)
    title: Optional[str] = None
    messages: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    state: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms, index=True)

    def transcript(self) -> List[Message]:
        return [Message.model_validate(m) for m in self.messages or []]


class FinalRequest(SQLModel, table=True):
    __tablename__ = "requests"
    id: str = Field(primary_key=True)  # same as the originating draft id
    owner_id: str = Field(index=True)
    title: str
    status: str = RequestStatus.NEW.value
    structured_fields: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    attachments: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    attachments_summary: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    shared: bool = False
    conversation: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms, index=True)


class UserProfile(SQLModel, table=True):
    __tablename__ = "users"
    id: str = Field(primary_key=True)
    name: Optional[str] = None
    email: Optional[str] = None
    department: Optional[str] = None

    @property
    def first_name(self) -> Optional[str]:
        parts = (self.name or "").split()
        return parts[0] if parts else None
