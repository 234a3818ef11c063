from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class UploadStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Publication(BaseModel):
    id: str
    title: str
    filename: str
    page_count: int = Field(ge=0)
    description: str
    views: int = 0
    created_at: datetime


class ProgressUpdate(BaseModel):
    percent: float = Field(ge=0, le=100)
    message: str


class UploadEvent(BaseModel):
    timestamp: datetime
    message: str


class UploadSummary(BaseModel):
    id: str
    filename: str
    status: UploadStatus
    progress: float
    message: str
    created_at: datetime
    updated_at: datetime
    publication_id: Optional[str] = None
    refresh_listing: bool = False
    error: Optional[str] = None


class UploadDetail(UploadSummary):
    events: List[UploadEvent]


class Session(BaseModel):
    token: str
    email: str
    created_at: datetime
    expires_at: datetime


class LoginRequest(BaseModel):
    email: str
    password: str


class SessionInfo(BaseModel):
    access_token: str
    token_type: str = "bearer"
    email: str
    expires_at: datetime


class PageView(BaseModel):
    publication_id: str
    title: str
    page: int
    total_pages: int
    image_key: Optional[str] = None
    image_url: Optional[str] = None
    has_previous: bool
    has_next: bool


class PublicationView(BaseModel):
    publication: Publication
    page: PageView
