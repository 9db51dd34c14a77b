from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from ..config.settings import Settings
from ..services import StorageService, VisionService, UploadService

# Лимит на запросы к классификатору (загрузка и идентификация)
CLASSIFIER_RATE_LIMIT = "10/minute"

limiter = Limiter(key_func=get_remote_address)


def rate_limit_disabled(request: Request) -> bool:
    """Лимит отключается настройками конкретного приложения"""
    return not request.app.state.settings.rate_limit_enabled


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_storage_service(request: Request) -> StorageService:
    return request.app.state.storage


def get_vision_service(request: Request) -> VisionService:
    return request.app.state.vision


def get_upload_service(request: Request) -> UploadService:
    return request.app.state.upload_service
