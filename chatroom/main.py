import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from chatroom.auth import authenticate, get_current_user_id, hash_password, start_session
from chatroom.config import settings
from chatroom.errors import ChatError, NotFoundError, ServerError
from chatroom.logging_utils import RequestLoggingMiddleware, log_message_data, setup_logging
from chatroom.messages import delete_message, update_message, write_message
from chatroom.metrics import (
    get_metrics,
    get_metrics_content_type,
    record_message_outcome,
    record_sync_statuses,
)
from chatroom.schemas import (
    ClassifiedMessageResponse,
    ClassifiedMessagesData,
    ClassifiedMessagesEnvelope,
    ErrorEnvelope,
    HealthResponse,
    LoginRequest,
    MessageEnvelope,
    MessageResponse,
    MessagesData,
    MessagesEnvelope,
    RegistrationRequest,
    StatusEnvelope,
    UpdateMessageRequest,
    UserEnvelope,
    UserResponse,
    WriteMessageRequest,
)
from chatroom.storage import (
    check_db_health,
    create_user,
    delete_user_sessions,
    get_all_messages,
    get_db,
    get_messages_changed_since,
    get_user_by_id,
    init_db,
    search_messages,
)
from chatroom.sync import classify_messages, parse_cursor


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

FAULT_PAGE = """<!doctype html>
<html>
  <head><title>Error</title></head>
  <body>
    <h1>Something went wrong</h1>
    <p>Unexpected error, please try again later.</p>
  </body>
</html>
"""

_RESULT_BY_STATUS = {
    400: "validation_error",
    403: "forbidden",
    404: "not_found",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database and create tables
    """
    init_db()
    yield


app = FastAPI(
    title="Chatroom API",
    description="Group chat with incremental message sync",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


# =============================================================================
# Error Handlers
# =============================================================================

def fault_page() -> HTMLResponse:
    return HTMLResponse(content=FAULT_PAGE, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


def error_envelope(status_code: int, message: str, details: Optional[str] = None) -> JSONResponse:
    body = ErrorEnvelope(message=message, details=details).model_dump(exclude_none=True)
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError) -> Response:
    """Single terminal handler: 5xx renders the fault page, the rest the JSON envelope."""
    if exc.status_code >= 500:
        logger.error(
            f"{type(exc).__name__} in {request.method} {request.url.path}: {exc.message} ({exc.details})"
        )
        return fault_page()
    logger.info(f"{type(exc).__name__} in {request.method} {request.url.path}: {exc.message}")
    return error_envelope(exc.status_code, exc.message, exc.details)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for err in exc.errors():
        loc = err.get("loc", ())
        field = str(loc[-1]) if loc else "request"
        problems.append(f"{field}: {err.get('msg', 'Invalid value')}")
    logger.warning(f"RequestValidationError in {request.method} {request.url.path}: {problems}")
    return error_envelope(status.HTTP_400_BAD_REQUEST, "Invalid input", "; ".join(problems))


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> Response:
    logger.error(
        f"Database error in {request.method} {request.url.path}: {exc}", exc_info=exc
    )
    return await chat_error_handler(request, ServerError(details=type(exc).__name__))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    if exc.status_code >= 500:
        return fault_page()
    return error_envelope(exc.status_code, str(exc.detail))


def _track_mutation(request: Request, operation: str, message_id: Optional[int], exc: Optional[ChatError] = None):
    result = "ok" if exc is None else _RESULT_BY_STATUS.get(exc.status_code, "error")
    record_message_outcome(operation, result)
    log_message_data(request, operation=operation, result=result, message_id=message_id)


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and the
    schema is applied, otherwise 503 (Service Unavailable).
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Account Routes
# =============================================================================

@app.post("/registration", response_model=UserEnvelope)
def register(body: RegistrationRequest, db: Session = Depends(get_db)) -> UserEnvelope:
    """
    Register a new account.

    Validation failures (bad email, names, password mismatch) and an
    already registered email return 400.
    """
    logger.info("Registration request received")
    user = create_user(
        db,
        email=body.email,
        first_name=body.first_name,
        last_name=body.last_name,
        password_hash=hash_password(body.password),
    )
    return UserEnvelope(message="Registration successful", data=UserResponse.from_row(user))


@app.post("/login", response_model=UserEnvelope)
def login(body: LoginRequest, response: Response, db: Session = Depends(get_db)) -> UserEnvelope:
    """Check credentials and start a cookie session."""
    user = authenticate(db, body.email, body.password)
    token = start_session(db, user.id)
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        max_age=settings.SESSION_TTL_SECONDS,
        httponly=True,
        samesite="lax",
        secure=settings.SESSION_COOKIE_SECURE,
    )
    logger.info(f"User {user.id} logged in")
    return UserEnvelope(message="Logged in", data=UserResponse.from_row(user))


@app.post("/signout", response_model=StatusEnvelope)
def signout(
    response: Response,
    caller_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> StatusEnvelope:
    """End every session of the caller."""
    delete_user_sessions(db, caller_id)
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return StatusEnvelope(message="Signed out")


@app.get("/api/me", response_model=UserEnvelope)
def current_user(
    caller_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> UserEnvelope:
    user = get_user_by_id(db, caller_id)
    if user is None:
        raise NotFoundError("User not found")
    return UserEnvelope(message="User retrieved", data=UserResponse.from_row(user))


@app.get("/error", response_class=HTMLResponse)
async def error_page() -> HTMLResponse:
    """Generic fault page clients are sent to on unexpected failures."""
    return fault_page()


# =============================================================================
# Message Routes
# =============================================================================

@app.get("/api/message", response_model=MessagesEnvelope)
def get_all(
    caller_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> MessagesEnvelope:
    """
    All live messages with author names, ordered by updatedAt ascending.
    """
    messages = get_all_messages(db)
    data = [MessageResponse.from_row(message) for message in messages]
    return MessagesEnvelope(message="Messages retrieved", data=MessagesData(messages=data))


@app.get("/api/message/date", response_model=ClassifiedMessagesEnvelope)
def get_by_date(
    last_fetch_timestamp: Annotated[
        Optional[str],
        Query(alias="lastFetchTimeStamp", description="ISO-8601 cursor from the previous poll"),
    ] = None,
    caller_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> ClassifiedMessagesEnvelope:
    """
    Messages created, edited or deleted after lastFetchTimeStamp.

    Each message carries a status relative to the cursor:
    deleted, new or updated (checked in that order).
    """
    cursor = parse_cursor(last_fetch_timestamp)
    classified = classify_messages(get_messages_changed_since(db, cursor), cursor)
    record_sync_statuses(message_status for _, message_status in classified)

    data = [
        ClassifiedMessageResponse.from_row(message, status=message_status)
        for message, message_status in classified
    ]
    logger.info(f"Delta for user {caller_id}: {len(data)} messages since {cursor.isoformat()}")
    return ClassifiedMessagesEnvelope(
        message="Messages retrieved",
        data=ClassifiedMessagesData(messages=data),
    )


@app.get("/api/message/search", response_model=MessagesEnvelope)
def search(
    string: Annotated[str, Query(description="Substring to look for in message content")] = "",
    caller_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> MessagesEnvelope:
    """Live messages whose content contains the given substring."""
    messages = search_messages(db, string)
    data = [MessageResponse.from_row(message) for message in messages]
    return MessagesEnvelope(
        message="Messages Found" if data else "No messages Found",
        data=MessagesData(messages=data),
    )


@app.post("/api/message", response_model=MessageEnvelope)
def send(
    request: Request,
    body: WriteMessageRequest,
    caller_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> MessageEnvelope:
    """Write a message as the caller. Empty content (after trimming and markup removal) is a 400."""
    try:
        message = write_message(db, caller_id, body.message_content)
    except ChatError as exc:
        _track_mutation(request, "write", None, exc)
        raise
    _track_mutation(request, "write", message.id)
    return MessageEnvelope(message="Message sent successfully", data=MessageResponse.from_row(message))


@app.put("/api/message", response_model=MessageEnvelope)
def edit(
    request: Request,
    body: UpdateMessageRequest,
    caller_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> MessageEnvelope:
    """Edit one of the caller's messages: 404 if missing, 403 if not the author."""
    try:
        message = update_message(db, caller_id, body.message_id, body.message_content)
    except ChatError as exc:
        _track_mutation(request, "update", body.message_id, exc)
        raise
    _track_mutation(request, "update", message.id)
    return MessageEnvelope(message="Message updated successfully", data=MessageResponse.from_row(message))


@app.delete("/api/message/{message_id}", response_model=MessageEnvelope)
def remove(
    request: Request,
    message_id: int,
    caller_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> MessageEnvelope:
    """Soft-delete one of the caller's messages: 404 if missing, 403 if not the author."""
    try:
        delete_message(db, caller_id, message_id)
    except ChatError as exc:
        _track_mutation(request, "delete", message_id, exc)
        raise
    _track_mutation(request, "delete", message_id)
    return MessageEnvelope(message="Message deleted successfully")


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
