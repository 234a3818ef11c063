from __future__ import annotations

import logging
from typing import Dict, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, File, HTTPException, Query, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .configuration import get_settings
from .exceptions import (
    InvalidCredentialsError,
    NotAPdfError,
    NotAuthenticatedError,
    PublicationNotFoundError,
    RemoteServiceError,
    UploadInProgressError,
)
from .middleware import RateLimiter, throttle
from .models import (
    LoginRequest,
    PageView,
    Publication,
    PublicationView,
    Session,
    SessionInfo,
    UploadDetail,
    UploadSummary,
)
from .pipeline import PublishPipeline
from .remote import PUBLICATIONS_TABLE, RemoteService
from .upload_manager import UploadManager
from .viewer import NEXT_KEY, PREVIOUS_KEY, ViewerNavigator

logger = logging.getLogger(__name__)

app = FastAPI(title="Flipbook API", version="0.1.0")

allowed_origins = ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

settings = get_settings()
remote_service = RemoteService.from_settings(settings)
upload_manager = UploadManager(
    PublishPipeline.from_settings(remote_service, settings),
    history_limit=settings.uploads.history_limit,
)
login_limiter = RateLimiter(requests_per_minute=settings.auth.login_attempts_per_minute)

bearer_scheme = HTTPBearer(auto_error=False)

VIEWER_MOVES = {"next", "previous", NEXT_KEY, PREVIOUS_KEY}


def get_remote_service() -> RemoteService:
    return remote_service


def get_upload_manager() -> UploadManager:
    return upload_manager


def _token(credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    return credentials.credentials if credentials else None


def require_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    remote: RemoteService = Depends(get_remote_service),
) -> Session:
    session = remote.get_session(_token(credentials))
    if session is None:
        raise NotAuthenticatedError()
    return session


@app.exception_handler(NotAuthenticatedError)
async def not_authenticated_handler(request: Request, exc: NotAuthenticatedError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": str(exc)},
        headers={"WWW-Authenticate": "Bearer"},
    )


@app.exception_handler(RemoteServiceError)
async def remote_service_error_handler(request: Request, exc: RemoteServiceError) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": str(exc)})


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


# --- Auth ---


@app.post("/auth/login", response_model=SessionInfo, dependencies=[Depends(throttle(login_limiter))])
def login(credentials: LoginRequest, remote: RemoteService = Depends(get_remote_service)) -> SessionInfo:
    try:
        session = remote.sign_in(credentials.email, credentials.password)
    except InvalidCredentialsError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    return SessionInfo(access_token=session.token, email=session.email, expires_at=session.expires_at)


@app.get("/auth/session", response_model=SessionInfo)
def current_session(session: Session = Depends(require_session)) -> SessionInfo:
    return SessionInfo(access_token=session.token, email=session.email, expires_at=session.expires_at)


@app.post("/auth/logout")
def logout(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    remote: RemoteService = Depends(get_remote_service),
) -> Dict[str, str]:
    remote.sign_out(_token(credentials))
    return {"status": "signed_out"}


# --- Admin ---


@app.post(
    "/publications",
    response_model=UploadSummary,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_session)],
)
async def upload_publication(
    pdf: UploadFile = File(...),
    manager: UploadManager = Depends(get_upload_manager),
) -> UploadSummary:
    try:
        manager.pipeline.validate(pdf.filename, pdf.content_type)
        data = await pdf.read()
        return manager.submit(pdf.filename, pdf.content_type, data)
    except NotAPdfError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except UploadInProgressError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    finally:
        await pdf.close()


@app.get("/uploads", response_model=list[UploadSummary], dependencies=[Depends(require_session)])
def list_uploads(manager: UploadManager = Depends(get_upload_manager)) -> list[UploadSummary]:
    return manager.list_uploads()


@app.get("/uploads/{upload_id}", response_model=UploadDetail, dependencies=[Depends(require_session)])
def get_upload(upload_id: str, manager: UploadManager = Depends(get_upload_manager)) -> UploadDetail:
    upload = manager.get_upload(upload_id)
    if not upload:
        raise HTTPException(status_code=404, detail="Upload not found")
    return upload


@app.get("/publications", response_model=list[Publication], dependencies=[Depends(require_session)])
def list_publications(remote: RemoteService = Depends(get_remote_service)) -> list[Publication]:
    records = remote.select_records(PUBLICATIONS_TABLE, order=("created_at", False))
    return [Publication(**record) for record in records]


@app.delete("/publications/{publication_id}", dependencies=[Depends(require_session)])
def delete_publication(publication_id: str, remote: RemoteService = Depends(get_remote_service)) -> Dict[str, str]:
    # Only the record goes; the PDF and page images stay in the object store.
    if not remote.delete_record(PUBLICATIONS_TABLE, publication_id):
        raise HTTPException(status_code=404, detail="Publication not found")
    return {"status": "deleted"}


# --- Viewer ---


def _open_viewer(remote: RemoteService, publication_id: str, page: int = 1) -> ViewerNavigator:
    try:
        return ViewerNavigator.load(remote, publication_id, start_page=page)
    except PublicationNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=404, detail="Page not found") from exc


@app.get("/publications/{publication_id}", response_model=PublicationView)
def open_publication(
    publication_id: str,
    background_tasks: BackgroundTasks,
    remote: RemoteService = Depends(get_remote_service),
) -> PublicationView:
    navigator = _open_viewer(remote, publication_id)
    background_tasks.add_task(navigator.record_view)
    return PublicationView(publication=navigator.publication, page=navigator.current_view())


@app.get("/publications/{publication_id}/view", response_model=PageView)
def view_page(
    publication_id: str,
    page: int = Query(1, ge=1),
    move: Optional[str] = None,
    remote: RemoteService = Depends(get_remote_service),
) -> PageView:
    if move is not None and move not in VIEWER_MOVES:
        raise HTTPException(status_code=400, detail=f"Unknown move: {move}")
    navigator = _open_viewer(remote, publication_id, page)
    navigator.move(move)
    return navigator.current_view()
