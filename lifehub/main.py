"""
FastAPI application for the LifeHub dashboard.

Routes are grouped by functionality:
- Health
- Authentication (status, register, login, logout)
- Public wiki pages
- Widgets (list, get, save, soft delete)
- Push notifications (VAPID key, subscribe, send test)

Build the app with ``create_app(settings)``; ``run()`` starts it under uvicorn.
"""

import contextlib
import logging
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from . import __version__
from .config import SessionSecret, Settings, VapidKeys
from .database import Database
from .domain import AuthError, Identity, LifeHubError
from .models import (
    AuthResponse, AuthStatusResponse, Credentials, HealthResponse, MessageResponse, SendTestRequest,
    SendTestResponse, StatusResponse, SubscribeRequest, VapidKeyResponse, WidgetData, WidgetResponse,
    WikiPageResponse,
)
from .push import NotificationRelay
from .services import AccountStore, LifeHub, SessionIssuer
from .storage import PublicPageResolver, SubscriptionStore, WidgetStore
from .utils import time_now

logger = logging.getLogger(__name__)

TOKEN_COOKIE = "token"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO"):
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


# -------------------------------
# Dependencies
# -------------------------------

def get_hub(request: Request) -> LifeHub:
    return request.app.state.hub


def get_current_identity(request: Request, authorization: Optional[str] = Header(None),
                         hub: LifeHub = Depends(get_hub)) -> Identity:
    """
    Resolve the caller from the ``Authorization`` header or the session cookie.

    Raises:
        AuthError: 401 if no token is supplied or it doesn't verify
    """
    token = authorization or request.cookies.get(TOKEN_COOKIE)
    if not token:
        raise AuthError("Authorization token is required")
    return hub.authenticate(token)


# -------------------------------
# Routes
# -------------------------------

router = APIRouter(prefix="/api")


@router.get("/health", response_model=HealthResponse)
def health_check(request: Request):
    return HealthResponse(status="healthy", timestamp=time_now(), database=request.app.state.db.ping())


@router.get("/auth/status", response_model=AuthStatusResponse)
def auth_status(hub: LifeHub = Depends(get_hub)):
    return AuthStatusResponse(registered=hub.auth_status())


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(creds: Credentials, hub: LifeHub = Depends(get_hub)):
    account = hub.register(creds.username, creds.password)
    return AuthResponse(success=True, message="User registered successfully", username=account.username)


@router.post("/auth/login", response_model=AuthResponse)
def login(creds: Credentials, request: Request, response: Response, hub: LifeHub = Depends(get_hub)):
    account, token = hub.login(creds.username, creds.password)
    settings: Settings = request.app.state.settings
    response.set_cookie(
        TOKEN_COOKIE,
        token,
        max_age=int(settings.token_ttl.total_seconds()),
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
    )
    return AuthResponse(success=True, message="Login successful", username=account.username, token=token)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(response: Response):
    # tokens are stateless; dropping the cookie is all there is to do
    response.delete_cookie(TOKEN_COOKIE)
    return MessageResponse(success=True, message="Logged out successfully")


@router.get("/public/wiki/{public_id}", response_model=WikiPageResponse, response_model_exclude_none=True)
def public_wiki_page(public_id: str, hub: LifeHub = Depends(get_hub)):
    return hub.public_page(public_id).to_dict()


@router.get("/widgets", response_model=List[WidgetResponse])
def list_widgets(identity: Identity = Depends(get_current_identity), hub: LifeHub = Depends(get_hub)):
    return [w.to_dict() for w in hub.list_widgets(identity)]


@router.post("/widgets/save", response_model=StatusResponse)
def save_widget(widget: WidgetData, identity: Identity = Depends(get_current_identity),
                hub: LifeHub = Depends(get_hub)):
    hub.save_widget(identity, widget.to_widget())
    return StatusResponse(status="success")


@router.delete("/widgets/delete/{widget_id}", response_model=StatusResponse)
def delete_widget(widget_id: str, identity: Identity = Depends(get_current_identity),
                  hub: LifeHub = Depends(get_hub)):
    hub.delete_widget(identity, widget_id)
    return StatusResponse(status="deleted")


@router.get("/widgets/{widget_id}", response_model=WidgetResponse)
def get_widget(widget_id: str, identity: Identity = Depends(get_current_identity),
               hub: LifeHub = Depends(get_hub)):
    return hub.get_widget(identity, widget_id).to_dict()


@router.delete("/widgets/{widget_id}", response_model=StatusResponse)
def delete_widget_by_path(widget_id: str, identity: Identity = Depends(get_current_identity),
                          hub: LifeHub = Depends(get_hub)):
    hub.delete_widget(identity, widget_id)
    return StatusResponse(status="deleted")


@router.get("/push/vapid-key", response_model=VapidKeyResponse)
def vapid_key(hub: LifeHub = Depends(get_hub)):
    return VapidKeyResponse(publicKey=hub.vapid.public_key)


@router.post("/push/subscribe", response_model=MessageResponse, status_code=201)
def subscribe(subscription: SubscribeRequest, identity: Identity = Depends(get_current_identity),
              hub: LifeHub = Depends(get_hub)):
    hub.subscribe(identity, subscription.endpoint, subscription.keys.p256dh, subscription.keys.auth)
    return MessageResponse(success=True, message="Subscription saved")


@router.post("/push/send-test", response_model=SendTestResponse)
def send_test(body: Optional[SendTestRequest] = None, identity: Identity = Depends(get_current_identity),
              hub: LifeHub = Depends(get_hub)):
    report = hub.send_test_notification(identity, body.message if body else None)
    return SendTestResponse(success=True, **report.to_dict())


# -------------------------------
# Error translation
# -------------------------------

async def lifehub_error_handler(request: Request, exc: LifeHubError):
    if exc.status_code >= 500:
        logger.error("%s %s failed", request.method, request.url.path, exc_info=exc)
        detail = "Internal server error"
    else:
        detail = str(exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": detail})


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [{"loc": list(err.get("loc", ())), "msg": err.get("msg", "")} for err in exc.errors()]
    return JSONResponse(status_code=400, content={"detail": "Invalid request body", "errors": errors})


# -------------------------------
# Application factory
# -------------------------------

def create_app(settings: Optional[Settings] = None, push_transport: Optional[Callable] = None) -> FastAPI:
    """
    Build the application and every service it depends on.

    Args:
        settings: Configuration; read from the environment when omitted
        push_transport: Replacement for ``pywebpush.webpush`` (used by tests)
    """
    settings = settings or Settings.from_env()
    settings.ensure_data_dir()

    db = Database(settings.db_path)
    db.init_schema()
    secret = SessionSecret.load_or_create(settings.data_dir)
    vapid = VapidKeys.load_or_create(settings.data_dir)

    hub = LifeHub(
        accounts=AccountStore(db, rounds=settings.bcrypt_rounds),
        sessions=SessionIssuer(secret, ttl=settings.token_ttl),
        widgets=WidgetStore(db),
        pages=PublicPageResolver(db),
        subscriptions=SubscriptionStore(db),
        relay=NotificationRelay(vapid.private_key, settings.vapid_subject, ttl=settings.push_ttl,
                                transport=push_transport),
        vapid=vapid,
        single_user=settings.single_user,
    )

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("LifeHub API starting up (database: %s, single user: %s)",
                    settings.db_path, settings.single_user)
        yield
        logger.info("LifeHub API shutting down")

    app = FastAPI(
        title="LifeHub API",
        description="Personal dashboard backend: widgets, public wiki pages and push notifications",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.db = db
    app.state.hub = hub

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.add_exception_handler(LifeHubError, lifehub_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(router)

    # Browser client build, if present. Mounted last so /api wins.
    if settings.static_dir and settings.static_dir.is_dir():
        app.mount("/", StaticFiles(directory=settings.static_dir, html=True), name="static")

    return app


def run():
    """Console entry point: start the API under uvicorn."""
    import uvicorn

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port,
                log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
