# tripdispatch/main.py
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .db import init_db
from .services.notifications import SubscriptionPoller
from .services.telegram import TelegramClient, TelegramError

from .routers import (
    auth as auth_router,
    upload as upload_router,
    trips as trips_router,
    subscriptions as subscriptions_router,
    dispatch as dispatch_router,
    notifications as notifications_router,
    webhook as webhook_router,
    bot_admin as bot_admin_router,
    points as points_router,
    users as users_router,
    database as database_router,
)

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


app = FastAPI(title="Trip Dispatch")

# --- CORS ---
allowed_origins = (
    [o.strip() for o in settings.ALLOWED_ORIGINS.split(",")]
    if settings.ALLOWED_ORIGINS
    else ["*"]
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Общие объекты: клиент Telegram и опросчик подписок ---
app.state.telegram = TelegramClient.from_settings()
app.state.poller = SubscriptionPoller.from_settings(app.state.telegram)


# --- Единый формат ошибок: {"success": false, "error": ..., "details"?: ...} ---
def _error(status_code: int, error: str, details=None) -> JSONResponse:
    body = {"success": False, "error": error}
    if details is not None:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    resp = _error(exc.status_code, str(exc.detail))
    if exc.headers:
        resp.headers.update(exc.headers)
    return resp


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return _error(400, "Некорректные данные запроса", details=jsonable_errors(exc))


@app.exception_handler(TelegramError)
async def telegram_error_handler(request: Request, exc: TelegramError):
    logger.error("Telegram API error on %s: %s", request.url.path, exc)
    return _error(500, "Ошибка Telegram API", details=str(exc))


@app.exception_handler(SQLAlchemyError)
async def db_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s", request.url.path)
    return _error(500, "Ошибка базы данных", details=str(exc.__cause__ or exc))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s", request.url.path)
    return _error(500, "Внутренняя ошибка сервера", details=str(exc))


def jsonable_errors(exc: RequestValidationError) -> list:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()]


# --- Подключение роутеров ---
app.include_router(auth_router.router)
app.include_router(upload_router.router)
app.include_router(trips_router.router)
app.include_router(subscriptions_router.router)
app.include_router(dispatch_router.router)
app.include_router(notifications_router.router)
app.include_router(webhook_router.router)        # вебхук Telegram
app.include_router(bot_admin_router.router)
app.include_router(points_router.router)
app.include_router(users_router.router)
app.include_router(database_router.router)


@app.get("/api/ping")
def ping():
    return {"success": True, "status": "ok"}


# --- Инициализация БД ---
@app.on_event("startup")
def on_startup():
    init_db()
    if not settings.BOT_TOKEN:
        logger.warning("BOT_TOKEN is not set: Telegram calls will fail")
