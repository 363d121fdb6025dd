import time
import traceback
from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mascot_chat.core_app.config import Settings, get_settings
from mascot_chat.core_app.dependencies.auth import (
    carry_cookies,
    clear_session_cookie,
    get_current_user,
    get_session_id,
    set_session_cookie,
)
from mascot_chat.core_app.exceptions import (
    ConflictError,
    NotFoundError,
    PipelineError,
    StorageError,
    UnauthorizedError,
)
from mascot_chat.core_app.models.text_llm import build_chat_model
from mascot_chat.core_app.schemas.message import ChatExchange, Message, SendMessageRequest
from mascot_chat.core_app.schemas.user import AvatarUpdateRequest, PublicUser, User, UserCredentials
from mascot_chat.core_app.services import auth
from mascot_chat.core_app.services.chat import MessagePipeline
from mascot_chat.core_app.services.classifier import ChatClassifier
from mascot_chat.core_app.services.rate_limiter import FixedWindowRateLimiter
from mascot_chat.core_app.services.storage import Storage, create_storage
from mascot_chat.core_app.tools.setup_logger import setup_logger

logger = setup_logger(__name__.upper())

router = APIRouter(prefix="/api")


def get_pipeline(request: Request) -> MessagePipeline:
    return request.app.state.pipeline


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


@router.get("/messages", response_model=List[Message])
async def list_messages(
        user: User = Depends(get_current_user),
        pipeline: MessagePipeline = Depends(get_pipeline)
):
    """Whole message log, oldest first."""
    return pipeline.get_messages()


@router.post("/messages", response_model=ChatExchange)
async def send_message(
        body: SendMessageRequest,
        response: Response,
        user: User = Depends(get_current_user),
        pipeline: MessagePipeline = Depends(get_pipeline)
):
    """
    Stores the user message and returns it together with the assistant reply
    """
    try:
        return await pipeline.process(body.content, body.settings)
    except ValueError as e:
        error = JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(e)})
        return carry_cookies(response, error)


@router.post("/messages/clear")
async def clear_messages(
        user: User = Depends(get_current_user),
        pipeline: MessagePipeline = Depends(get_pipeline)
):
    pipeline.clear()
    return {"status": "ok"}


@router.get("/suggestions", response_model=List[str])
async def suggestions(
        user: User = Depends(get_current_user),
        pipeline: MessagePipeline = Depends(get_pipeline)
):
    return await pipeline.suggestions()


@router.patch("/user/avatar", response_model=PublicUser)
async def update_avatar(
        body: AvatarUpdateRequest,
        user: User = Depends(get_current_user),
        storage: Storage = Depends(get_storage)
):
    updated = storage.update_user_avatar(user.id, body.settings)
    logger.info(f"Avatar updated for user {user.id}")
    return updated.public()


@router.post("/register", response_model=PublicUser, status_code=status.HTTP_201_CREATED)
async def register(body: UserCredentials, request: Request, response: Response):
    """
    Creates the user and logs them in straight away
    """
    settings: Settings = request.app.state.settings
    storage: Storage = request.app.state.storage

    user = auth.register(storage, body.username, body.password)
    session = storage.sessions.create(user.id, settings.session_ttl)
    set_session_cookie(response, session, settings)
    return user.public()


@router.post("/login", response_model=PublicUser)
async def login(body: UserCredentials, request: Request, response: Response):
    settings: Settings = request.app.state.settings
    storage: Storage = request.app.state.storage

    try:
        user = auth.authenticate(storage, body.username, body.password)
    except UnauthorizedError as e:
        # a failed attempt leaves any existing session and its cookie alone
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"message": str(e)})

    # a successful login always starts from a fresh session
    previous_sid = get_session_id(request)
    if previous_sid:
        storage.sessions.destroy(previous_sid)

    session = storage.sessions.create(user.id, settings.session_ttl)
    set_session_cookie(response, session, settings)
    logger.info(f"User {user.id} logged in")
    return user.public()


@router.post("/logout")
async def logout(request: Request, response: Response):
    storage: Storage = request.app.state.storage

    sid = get_session_id(request)
    if sid:
        storage.sessions.destroy(sid)
    clear_session_cookie(response)
    return {"status": "ok"}


@router.get("/user", response_model=PublicUser)
async def current_user(user: User = Depends(get_current_user)):
    return user.public()


def _format_validation_error(exc: RequestValidationError) -> str:
    details = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        message = error.get("msg", "Invalid value")
        details.append(f"{message} at \"{location}\"" if location else message)
    return "Validation error: " + "; ".join(details)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST,
                            content={"error": _format_validation_error(exc)})

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"message": str(exc)})

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"message": str(exc)})

    @app.exception_handler(UnauthorizedError)
    async def unauthorized_handler(request: Request, exc: UnauthorizedError):
        response = JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"message": str(exc)})
        clear_session_cookie(response)
        return response

    @app.exception_handler(PipelineError)
    async def pipeline_handler(request: Request, exc: PipelineError):
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                            content={"error": "Failed to process message"})

    @app.exception_handler(StorageError)
    async def storage_handler(request: Request, exc: StorageError):
        logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                            content={"message": "Internal Server Error"})

    @app.exception_handler(Exception)
    async def unhandled_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
        content = {"message": "Internal Server Error"}
        if not request.app.state.settings.is_production:
            content["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


def client_address(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def register_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        if not request.url.path.startswith("/api/"):
            return await call_next(request)

        result = request.app.state.rate_limiter.hit(client_address(request))
        if not result.allowed:
            logger.warning(f"Rate limit hit by {client_address(request)} on {request.url.path}")
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "error": "Too many requests",
                    "message": f"Please try again in {result.retry_after} seconds",
                    "retryAfter": result.retry_after,
                },
                headers={"Retry-After": str(result.retry_after)},
            )
        return await call_next(request)

    # registered last so it wraps the limiter and also logs 429s
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        if request.url.path.startswith("/api"):
            duration = (time.perf_counter() - start) * 1000
            logger.info(f"{request.method} {request.url.path} {response.status_code} in {duration:.0f}ms")
        return response


def create_app(
        settings: Optional[Settings] = None,
        storage: Optional[Storage] = None,
        classifier: Optional[ChatClassifier] = None
) -> FastAPI:
    """
    Builds the app. All mutable state (storage, limiter) lives on app.state,
    so tests can swap in their own implementations.
    """
    settings = settings or get_settings()
    storage = storage or create_storage(settings)
    classifier = classifier or ChatClassifier(build_chat_model(settings))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.clear_messages_on_startup:
            try:
                storage.clear_messages()
                logger.info("Chat history cleared on server start")
            except StorageError as e:
                logger.error(f"Failed to clear chat history: {e}")
        yield

    app = FastAPI(
        title="Mascot Chat API",
        version="1.0.0",
        description="Chat assistant backend: message log, LLM replies and sentiment for the mascot.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.storage = storage
    app.state.pipeline = MessagePipeline(storage, classifier)
    app.state.rate_limiter = FixedWindowRateLimiter(settings.rate_limit, settings.rate_window)

    register_middleware(app)
    if settings.allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    register_exception_handlers(app)
    app.include_router(router)

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    return app


def main() -> None:
    settings = get_settings()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
