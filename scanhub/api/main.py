"""
ScanHub API
===========
REST API for file submissions, scans and the social graph.
"""

import uuid
from contextlib import asynccontextmanager
from typing import Dict, Any, Optional

from fastapi import Body, Depends, FastAPI, File, Form, Header, Request, UploadFile, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from pydantic import BaseModel

from ..core.config import get_config
from ..core.exceptions import (
    AuthenticationError,
    ConflictException,
    FileTooLargeError,
    NotFoundException,
    PermissionDeniedError,
    ScanHubException,
    ValidationException,
)
from ..core.logging_config import clear_log_context, get_logger, set_log_context
from ..core.security import decode_token
from ..domain.actions import parse_file_action, parse_user_action
from ..domain.entities import UserRecord, canonical_username, normalize_sha256
from ..domain.schemas import validate_payload
from ..services.container import ServiceContainer

logger = get_logger(__name__)


# --- Models ---
class Token(BaseModel):
    access_token: str
    token_type: str


class Message(BaseModel):
    verbose_msg: str


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/token")


def _status_for(exc: ScanHubException) -> int:
    if isinstance(exc, FileTooLargeError):
        return status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    if isinstance(exc, ValidationException):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, AuthenticationError):
        if exc.code == "INVALID_TOKEN_TYPE":
            return status.HTTP_400_BAD_REQUEST
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(exc, PermissionDeniedError):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, NotFoundException):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ConflictException):
        return status.HTTP_409_CONFLICT
    # Storage and queue failures (ScanDispatchError, MessageException,
    # StorageException) and anything unexpected
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def scanhub_exception_handler(request: Request, exc: ScanHubException) -> JSONResponse:
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc!r}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}")

    headers = None
    if status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}

    body = exc.to_dict()
    body["verbose_msg"] = exc.message
    return JSONResponse(status_code=status_code, content=body, headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Malformed request",
            "verbose_msg": "Malformed request",
            "details": {"validation_errors": jsonable_encoder(exc.errors())},
        },
    )


# --- Dependencies ---
def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    services: ServiceContainer = Depends(get_services),
) -> UserRecord:
    username = decode_token(token, config=services.config.api)
    user = await services.users.get(username)
    if user is None:
        raise AuthenticationError()
    set_log_context(username=user.key)
    return user


def require_self(current_user: UserRecord, username: str) -> None:
    if current_user.key != canonical_username(username):
        raise PermissionDeniedError("Not allowed to modify another user")


def require_admin(current_user: UserRecord) -> None:
    if not current_user.admin:
        raise PermissionDeniedError("Administrator privileges required", code="ADMIN_REQUIRED")


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        services: Pre-built service container. When omitted the container is
            created from configuration at startup and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup and shutdown logic.
        """
        owned = app.state.services is None
        if owned:
            app.state.services = ServiceContainer.from_config()
            await app.state.services.connect()
        try:
            yield
        finally:
            if owned:
                await app.state.services.close()

    app = FastAPI(
        title="ScanHub API",
        description="API for submitting files for malware analysis.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_config().api.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ScanHubException, scanhub_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        set_log_context(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            clear_log_context()
        response.headers["X-Request-ID"] = request_id
        return response

    # --- Endpoints ---

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "ok", "service": "scanhub-api"}

    # Auth

    @app.post("/token", response_model=Token)
    async def login_for_access_token(
        form_data: OAuth2PasswordRequestForm = Depends(),
        services: ServiceContainer = Depends(get_services),
    ):
        token = await services.accounts.login(form_data.username, form_data.password)
        return {"access_token": token, "token_type": "bearer"}

    @app.post("/v1/auth/login/", response_model=Token)
    async def login(
        payload: Dict[str, Any] = Body(...),
        services: ServiceContainer = Depends(get_services),
    ):
        validate_payload("login", payload)
        token = await services.accounts.login(payload["username"], payload["password"])
        return {"access_token": token, "token_type": "bearer"}

    @app.get("/v1/auth/confirm/", response_model=Message)
    async def confirm_account(token: str, services: ServiceContainer = Depends(get_services)):
        await services.accounts.confirm(token)
        return {"verbose_msg": "ok"}

    @app.post("/v1/auth/reconfirm/", response_model=Message)
    async def resend_confirmation(
        request: Request,
        payload: Dict[str, Any] = Body(...),
        services: ServiceContainer = Depends(get_services),
    ):
        validate_payload("email", payload)
        await services.accounts.resend_confirmation(payload["email"], str(request.base_url))
        return {"verbose_msg": "ok"}

    @app.post("/v1/auth/reset-password/", response_model=Message)
    async def request_password_reset(
        payload: Dict[str, Any] = Body(...),
        services: ServiceContainer = Depends(get_services),
    ):
        validate_payload("email", payload)
        await services.accounts.request_password_reset(payload["email"])
        return {"verbose_msg": "ok"}

    @app.post("/v1/auth/password/", response_model=Message)
    async def reset_password(
        token: str,
        payload: Dict[str, Any] = Body(...),
        services: ServiceContainer = Depends(get_services),
    ):
        validate_payload("password", payload)
        await services.accounts.reset_password(token, payload["password"])
        return {"verbose_msg": "ok"}

    # Users

    @app.post("/v1/users/", status_code=status.HTTP_201_CREATED)
    async def register(
        request: Request,
        payload: Dict[str, Any] = Body(...),
        services: ServiceContainer = Depends(get_services),
    ):
        validate_payload("register", payload)
        user = await services.accounts.register(
            payload["username"],
            payload["password"],
            payload["email"],
            base_url=str(request.base_url),
        )
        return user.to_public_dict()

    @app.get("/v1/users/{username}/")
    async def get_user(username: str, services: ServiceContainer = Depends(get_services)):
        user = await services.accounts.get_user(username)
        return user.to_public_dict()

    @app.post("/v1/users/{username}/actions/", response_model=Message)
    async def user_action(
        username: str,
        payload: Dict[str, Any] = Body(...),
        current_user: UserRecord = Depends(get_current_user),
        services: ServiceContainer = Depends(get_services),
    ):
        action = parse_user_action(username, payload)
        await services.social.apply(current_user.key, action)
        return {"verbose_msg": "ok"}

    @app.get("/v1/users/{username}/activities/")
    async def user_activities(
        username: str,
        offset: int = 0,
        limit: int = 50,
        services: ServiceContainer = Depends(get_services),
    ):
        activities = await services.activity.timeline(username, offset, limit)
        return {"activities": [a.to_dict() for a in activities]}

    @app.get("/v1/users/{username}/likes/")
    async def user_likes(username: str, services: ServiceContainer = Depends(get_services)):
        return {"likes": await services.profiles.likes(username)}

    @app.get("/v1/users/{username}/submissions/")
    async def user_submissions(username: str, services: ServiceContainer = Depends(get_services)):
        return {"submissions": await services.profiles.submissions(username)}

    @app.get("/v1/users/{username}/following/")
    async def user_following(username: str, services: ServiceContainer = Depends(get_services)):
        return {"following": await services.profiles.following(username)}

    @app.get("/v1/users/{username}/followers/")
    async def user_followers(username: str, services: ServiceContainer = Depends(get_services)):
        return {"followers": await services.profiles.followers(username)}

    @app.post("/v1/users/{username}/password/", response_model=Message)
    async def update_password(
        username: str,
        payload: Dict[str, Any] = Body(...),
        current_user: UserRecord = Depends(get_current_user),
        services: ServiceContainer = Depends(get_services),
    ):
        require_self(current_user, username)
        validate_payload("password_update", payload)
        await services.accounts.update_password(
            username, payload["oldpassword"], payload["newpassword"]
        )
        return {"verbose_msg": "ok"}

    @app.post("/v1/users/{username}/email/", response_model=Message)
    async def update_email(
        request: Request,
        username: str,
        payload: Dict[str, Any] = Body(...),
        current_user: UserRecord = Depends(get_current_user),
        services: ServiceContainer = Depends(get_services),
    ):
        require_self(current_user, username)
        validate_payload("email_update", payload)
        await services.accounts.update_email(
            username, payload["password"], payload["email"], base_url=str(request.base_url)
        )
        return {"verbose_msg": "ok"}

    @app.put("/v1/users/{username}/avatar/", response_model=Message)
    async def update_avatar(
        username: str,
        file: UploadFile = File(...),
        current_user: UserRecord = Depends(get_current_user),
        services: ServiceContainer = Depends(get_services),
    ):
        require_self(current_user, username)
        data = await file.read(services.config.storage.max_avatar_size + 1)
        await services.accounts.update_avatar(
            username, data, file.content_type or "application/octet-stream"
        )
        return {"verbose_msg": "ok"}

    @app.get("/v1/users/{username}/avatar/")
    async def get_avatar(username: str, services: ServiceContainer = Depends(get_services)):
        data = await services.accounts.get_avatar(username)
        return Response(content=data, media_type="image/png")

    # Files

    @app.post("/v1/files/")
    async def submit_file(
        file: UploadFile = File(...),
        source: str = Form("web"),
        x_geoip_country: str = Header(""),
        current_user: UserRecord = Depends(get_current_user),
        services: ServiceContainer = Depends(get_services),
    ):
        # One byte past the limit is enough to reject an oversize upload
        data = await file.read(services.config.storage.max_file_size + 1)
        outcome = await services.pipeline.submit(
            data,
            file.filename or "",
            current_user.key,
            source=source,
            country=x_geoip_country,
        )
        return JSONResponse(
            status_code=status.HTTP_201_CREATED if outcome.is_new else status.HTTP_200_OK,
            content={
                "verbose_msg": "File queued successfully for analysis",
                "sha256": outcome.sha256,
                "is_new": outcome.is_new,
                "message_id": outcome.request.metadata.message_id,
            },
        )

    @app.get("/v1/files/{sha256}/")
    async def get_file(sha256: str, services: ServiceContainer = Depends(get_services)):
        file = await services.content_store.get(sha256)
        return file.to_dict()

    @app.delete("/v1/files/", status_code=status.HTTP_202_ACCEPTED, response_model=Message)
    async def delete_all_files(
        current_user: UserRecord = Depends(get_current_user),
        services: ServiceContainer = Depends(get_services),
    ):
        require_admin(current_user)
        services.tasks.spawn(services.content_store.delete_all_files(), name="files:bulk-delete")
        return {"verbose_msg": "Deletion of all files started"}

    @app.delete("/v1/files/{sha256}/", response_model=Message)
    async def delete_file(
        sha256: str,
        current_user: UserRecord = Depends(get_current_user),
        services: ServiceContainer = Depends(get_services),
    ):
        require_admin(current_user)
        await services.content_store.delete_file(sha256)
        return {"verbose_msg": "File was deleted"}

    @app.get("/v1/files/{sha256}/status/")
    async def file_status(sha256: str, services: ServiceContainer = Depends(get_services)):
        current = await services.workflow.status(sha256)
        return {
            "sha256": normalize_sha256(sha256),
            "status": int(current),
            "status_name": current.name.lower(),
        }

    @app.post("/v1/files/{sha256}/actions/", response_model=Message)
    async def file_action(
        sha256: str,
        payload: Dict[str, Any] = Body(...),
        current_user: UserRecord = Depends(get_current_user),
        services: ServiceContainer = Depends(get_services),
    ):
        action = parse_file_action(sha256, payload)
        await services.social.apply(current_user.key, action)
        return {"verbose_msg": "ok"}

    @app.post("/v1/files/{sha256}/like/", response_model=Message)
    async def like_file(
        sha256: str,
        current_user: UserRecord = Depends(get_current_user),
        services: ServiceContainer = Depends(get_services),
    ):
        await services.social.like(current_user.key, sha256)
        return {"verbose_msg": "ok"}

    @app.post("/v1/files/{sha256}/unlike/", response_model=Message)
    async def unlike_file(
        sha256: str,
        current_user: UserRecord = Depends(get_current_user),
        services: ServiceContainer = Depends(get_services),
    ):
        await services.social.unlike(current_user.key, sha256)
        return {"verbose_msg": "ok"}

    @app.post("/v1/files/{sha256}/rescan/", response_model=Message)
    async def rescan_file(
        sha256: str,
        current_user: UserRecord = Depends(get_current_user),
        services: ServiceContainer = Depends(get_services),
    ):
        await services.workflow.rescan(sha256)
        return {"verbose_msg": "File queued successfully for analysis"}

    @app.post("/v1/files/{sha256}/ingest/", status_code=status.HTTP_201_CREATED)
    async def ingest_file(
        sha256: str,
        x_geoip_country: str = Header(""),
        current_user: UserRecord = Depends(get_current_user),
        services: ServiceContainer = Depends(get_services),
    ):
        require_admin(current_user)
        outcome = await services.pipeline.ingest(sha256, x_geoip_country)
        return {
            "verbose_msg": "File queued successfully for analysis",
            "sha256": outcome.sha256,
            "is_new": outcome.is_new,
        }

    @app.get("/v1/files/{sha256}/download/")
    async def download_file(
        sha256: str,
        current_user: UserRecord = Depends(get_current_user),
        services: ServiceContainer = Depends(get_services),
    ):
        data = await services.content_store.download_archive(sha256)
        return Response(
            content=data,
            media_type="application/zip",
            headers={"Content-Disposition": f'attachment; filename="{sha256.strip().lower()}.zip"'},
        )

    # Comments

    @app.get("/v1/files/{sha256}/comments/")
    async def list_comments(
        sha256: str,
        offset: int = 0,
        limit: int = 50,
        services: ServiceContainer = Depends(get_services),
    ):
        comments = await services.comments.list_comments(sha256, offset, limit)
        return {"comments": [c.to_dict() for c in comments]}

    @app.post("/v1/files/{sha256}/comments/", status_code=status.HTTP_201_CREATED)
    async def post_comment(
        sha256: str,
        payload: Dict[str, Any] = Body(...),
        current_user: UserRecord = Depends(get_current_user),
        services: ServiceContainer = Depends(get_services),
    ):
        validate_payload("comment", payload)
        comment = await services.comments.post_comment(current_user.key, sha256, payload["body"])
        return comment.to_dict()

    @app.delete("/v1/files/{sha256}/comments/{comment_id}/", response_model=Message)
    async def delete_comment(
        sha256: str,
        comment_id: str,
        current_user: UserRecord = Depends(get_current_user),
        services: ServiceContainer = Depends(get_services),
    ):
        await services.comments.delete_comment(current_user.key, sha256, comment_id)
        return {"verbose_msg": "Comment was deleted"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
