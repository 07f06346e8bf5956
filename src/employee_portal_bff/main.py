# src/employee_portal_bff/main.py

import logging
from typing import Any, Optional

import httpx
import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response as StarletteResponse

from . import proxy, uploads
from .auth_utils import SessionController
from .config import Settings, describe_settings, settings as default_settings
from .errors import InvalidCredentialsError, StorageError, TransportError, UploadValidationError, UpstreamError
from .proxy import UpstreamClient
from .route_guard import guard
from .session_store import SessionContext, SessionStore, build_session_store

logger = logging.getLogger(__name__)


class LoginForm(BaseModel):
    kode_user: str
    password: str


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# --- Session middleware ---

class SessionMiddlewareCustom(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        app_settings: Settings = request.app.state.settings
        store: SessionStore = request.app.state.session_store
        cookie_name = app_settings.SESSION_COOKIE_NAME

        session_id = request.cookies.get(cookie_name)
        data = store.load(session_id) if session_id else None
        request.state.session = SessionContext(session_id if data else None, data)

        response: StarletteResponse = await call_next(request)

        session: SessionContext = request.state.session
        was_modified = session.modified
        # The file-backed store writes to disk on save and delete.
        keep_cookie = await run_in_threadpool(session.persist, store)
        if keep_cookie and was_modified:
            response.set_cookie(
                cookie_name,
                session.session_id,
                max_age=app_settings.SESSION_TTL_SECONDS,
                httponly=True,
                secure=app_settings.SESSION_COOKIE_SECURE,
                samesite="lax",
            )
        elif not keep_cookie and session_id:
            response.delete_cookie(cookie_name, httponly=True, samesite="lax")
        return response


# --- Dependencies ---

def get_session(request: Request) -> SessionContext:
    return request.state.session


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_controller(request: Request) -> SessionController:
    return request.app.state.session_controller


def get_object_store(request: Request) -> uploads.S3ObjectStore:
    return request.app.state.object_store


async def read_login_form(request: Request) -> LoginForm:
    content_type = request.headers.get("content-type", "")
    try:
        if content_type.startswith("application/json"):
            payload: Any = await request.json()
        else:
            payload = dict(await request.form())
        return LoginForm.model_validate(payload)
    except (ValidationError, ValueError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="kode_user and password are required.",
        ) from e


def create_app(
        app_settings: Optional[Settings] = None,
        session_store: Optional[SessionStore] = None,
        upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
        s3_client: Any = None,
) -> FastAPI:
    app_settings = app_settings or default_settings

    app = FastAPI(
        title="EmployeePortal-BFF API",
        description="Backend-For-Frontend for the employee portal, holding API secrets and proxying to the HR API.",
        version="0.1.0",
    )
    app.state.settings = app_settings
    app.state.session_store = session_store or build_session_store(
        app_settings.SESSION_STORE_PATH, app_settings.SESSION_TTL_SECONDS
    )
    app.state.upstream_transport = upstream_transport
    upstream = UpstreamClient(app_settings, transport=upstream_transport)
    app.state.session_controller = SessionController(app_settings, upstream)
    app.state.object_store = uploads.S3ObjectStore(
        s3_client if s3_client is not None else uploads.create_s3_client(app_settings),
        bucket=app_settings.AWS_BUCKET,
        region=app_settings.AWS_REGION,
    )

    app.add_middleware(SessionMiddlewareCustom)

    @app.on_event("startup")
    async def startup_event():
        configure_logging(app_settings.LOG_LEVEL)
        logger.info("--- EmployeePortal-BFF (FastAPI) Starting Up ---")
        for line in describe_settings(app_settings):
            logger.info(line)
        hydrated = await run_in_threadpool(app.state.session_store.hydrate)
        logger.info(f"Session store hydrated with {hydrated} session(s).")
        logger.info("-------------------------------------------")

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    # --- Authentication Routes ---

    @app.post("/auth/login")
    async def login(
            request: Request,
            form: LoginForm = Depends(read_login_form),
            session: SessionContext = Depends(get_session),
            controller: SessionController = Depends(get_controller),
    ):
        try:
            await controller.login(session, form.kode_user, form.password, request=request)
        except InvalidCredentialsError as e:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.message)
        except UpstreamError as e:
            code = e.status_code if e.status_code and e.status_code >= 400 else status.HTTP_502_BAD_GATEWAY
            raise HTTPException(status_code=code, detail=e.message)
        except TransportError as e:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)
        return RedirectResponse(url=app_settings.HOME_PATH, status_code=status.HTTP_303_SEE_OTHER)

    @app.post("/auth/logout")
    async def logout(
            session: SessionContext = Depends(get_session),
            controller: SessionController = Depends(get_controller),
    ):
        await controller.logout(session)
        return RedirectResponse(url=app_settings.LOGIN_VIEW_PATH, status_code=status.HTTP_303_SEE_OTHER)

    @app.get("/auth/session")
    async def get_session_info(session: SessionContext = Depends(get_session)):
        profile = session.data.profile()
        return {"authenticated": profile is not None, "user": profile}

    @app.get("/auth/guard")
    async def check_navigation(
            path: str = Query(..., description="View path the frontend router is about to enter"),
            session: SessionContext = Depends(get_session),
    ):
        decision = guard(
            session.token,
            path,
            login_path=app_settings.LOGIN_VIEW_PATH,
            home_path=app_settings.HOME_PATH,
            public_paths=app_settings.PWA_PUBLIC_PATHS,
        )
        return {"allow": decision.allow, "redirect": decision.redirect}

    # --- Uploads ---

    @app.post("/api/upload-s3")
    async def upload_s3(request: Request, store: uploads.S3ObjectStore = Depends(get_object_store)):
        form = await request.form()
        try:
            uploaded = await uploads.upload_attendance_photo(form, store, app_settings)
        except UploadValidationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
        except StorageError as e:
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.detail)
        finally:
            await form.close()
        return {"url": uploaded.public_url}

    @app.post("/api/upload-profile-s3")
    async def upload_profile_s3(request: Request, store: uploads.S3ObjectStore = Depends(get_object_store)):
        form = await request.form()
        try:
            uploaded = await uploads.upload_profile_photo(form, store, app_settings)
        except UploadValidationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
        except StorageError as e:
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.detail)
        finally:
            await form.close()
        return {"url": uploaded.public_url, "success": True}

    # --- Authenticated proxy to the HR API ---

    proxy_methods = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

    @app.api_route(f"{app_settings.PROXY_PREFIX}/{{controller}}", methods=proxy_methods)
    @app.api_route(f"{app_settings.PROXY_PREFIX}/{{controller}}/{{path:path}}", methods=proxy_methods)
    async def proxy_to_upstream(request: Request, session: SessionContext = Depends(get_session)):
        return await proxy.forward(
            request,
            app_settings,
            transport=app.state.upstream_transport,
            session_token=session.token,
        )

    return app


app = create_app()


def run(host: str = "127.0.0.1", port: int = 8000) -> None:
    uvicorn.run("employee_portal_bff.main:app", host=host, port=port)
