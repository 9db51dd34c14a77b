import hmac
import logging
import logging.config
import re
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Depends, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .api import plants_router, images_router, objects_router, limiter
from .config import Settings, load_settings, build_logging_config
from .database import (create_engine_from_config, create_session_factory, create_db_and_tables,
                       check_db_connection, get_async_db)
from .schemas import HealthResponse
from .services import StorageService, VisionService, UploadService
from .utils.exceptions import ApiError, ServiceError, ErrorCode
from .utils.response import (success_response, error_response, validation_error, internal_error,
                             api_error_response, service_error_response)

logger = logging.getLogger(__name__)

# Эндпоинты, разрешенные без ключа функции
ALLOWED_PATHS = [
    "/",
    "/health",
    "/docs",
    "/openapi.json",
    "/objects/{area}/{name}",
]

FUNCTION_KEY_HEADER = "x-functions-key"
FUNCTION_KEY_QUERY = "code"


def is_allowed_path(path: str) -> bool:
    for allowed in ALLOWED_PATHS:
        if "{" in allowed and "}" in allowed:  # Если путь содержит параметры
            regex_path = allowed.replace("{", "(?P<").replace("}", ">[^/]+)")
            if re.match(f"^{regex_path}$", path):
                return True
        elif path == allowed:
            return True
    return False


def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[StorageService] = None,
    vision: Optional[VisionService] = None
) -> FastAPI:
    """
    Создание приложения

    Args:
        settings: конфигурация (по умолчанию config.yml + переменные окружения)
        storage: готовое хранилище (по умолчанию создается по settings.storage)
        vision: готовый клиент классификатора (по умолчанию по settings.classifier)

    Returns:
        FastAPI приложение
    """
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not settings.function_key:
            logger.error("FUNCTION_KEY не установлен в переменных окружения!")
            raise ValueError("FUNCTION_KEY обязателен для работы приложения")

        engine = create_engine_from_config(settings.database)
        app.state.engine = engine
        app.state.session_factory = create_session_factory(engine)
        await create_db_and_tables(engine)

        app.state.storage = storage or StorageService(settings.storage)
        app.state.vision = vision or VisionService(settings.classifier)
        app.state.upload_service = UploadService(app.state.storage, app.state.vision, settings.validation)

        logger.info("FastAPI приложение запущено и готово к работе.")
        yield
        await engine.dispose()
        logger.info("FastAPI приложение завершает работу.")

    app = FastAPI(
        title="Plant Registry API",
        description="API для определения растений по фото и хранения коллекции растений",
        version=__version__,
        lifespan=lifespan
    )
    app.state.settings = settings

    # Счетчики общие для процесса, включение лимита задается settings.rate_limit_enabled
    app.state.limiter = limiter

    @app.middleware("http")
    async def verify_function_key_middleware(request: Request, call_next):
        """
        Проверка ключа функции во всех запросах, кроме открытых эндпоинтов.
        Ключ передается в параметре code или в заголовке x-functions-key.
        """
        if is_allowed_path(request.url.path):
            return await call_next(request)

        provided = request.query_params.get(FUNCTION_KEY_QUERY) or request.headers.get(FUNCTION_KEY_HEADER)
        expected = settings.function_key or ""
        if not provided or not expected or not hmac.compare_digest(provided.encode(), expected.encode()):
            logger.warning(f"Запрос без действительного ключа функции: {request.method} {request.url.path}")
            return error_response(ErrorCode.UNAUTHORIZED, "Отсутствует или неверный ключ функции",
                                  status.HTTP_401_UNAUTHORIZED)

        return await call_next(request)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        logger.info(f"Ошибка запроса {request.method} {request.url.path}: {exc.code.value} {exc.message}")
        return api_error_response(exc)

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        logger.error(
            f"Ошибка внешнего сервиса {request.method} {request.url.path}: "
            f"{exc.error_code.value} ({exc.kind.value}) {exc.message}. {exc.details or ''}"
        )
        return service_error_response(exc)

    # Обработчик ошибок валидации Pydantic
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        logger.error(f"Ошибка валидации запроса: {errors}")
        if any(error.get("type") == "json_invalid" for error in errors):
            return internal_error("Тело запроса не является корректным JSON")
        if not errors:
            return validation_error("Некорректные данные запроса")
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        details = f"{location}: {first.get('msg')}" if location else first.get("msg")
        return validation_error("Некорректные данные запроса", details)

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        logger.warning(f"Превышен лимит запросов: {request.client.host if request.client else '-'} {request.url.path}")
        return error_response(ErrorCode.RATE_LIMITED, "Слишком много запросов. Повторите попытку позже",
                              status.HTTP_429_TOO_MANY_REQUESTS, str(exc.detail))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == status.HTTP_401_UNAUTHORIZED:
            return error_response(ErrorCode.UNAUTHORIZED, str(exc.detail), exc.status_code)
        if exc.status_code >= 500:
            return internal_error()
        # Неизвестный маршрут или метод тоже считается некорректным запросом
        return validation_error(str(exc.detail), f"{request.method} {request.url.path}")

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(f"Необработанная ошибка {request.method} {request.url.path}: {exc}", exc_info=True)
        return internal_error()

    @app.get("/")
    async def root():
        """Корневой эндпоинт"""
        return success_response({
            "message": "Plant Registry API",
            "version": __version__,
            "docs": "/docs"
        })

    @app.get("/health", summary="Проверка подключения к БД")
    async def health_check(db: AsyncSession = Depends(get_async_db)):
        """Проверка подключения к БД"""
        db_connected = await check_db_connection(db)
        return success_response(HealthResponse(
            status="healthy" if db_connected else "degraded",
            database_connected=db_connected
        ))

    app.include_router(plants_router)
    app.include_router(images_router)
    app.include_router(objects_router)

    return app


def create_default_app() -> FastAPI:
    """Приложение с конфигурацией из config.yml и переменных окружения (для uvicorn)"""
    settings = load_settings()
    logging.config.dictConfig(build_logging_config(settings.log_level, settings.log_file))
    return create_app(settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("plant_registry.main:create_default_app", factory=True, host="0.0.0.0", port=8000)
