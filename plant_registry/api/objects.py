import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from ..services import StorageService
from ..utils.exceptions import StorageError, ErrorKind, UnauthorizedError
from .deps import get_storage_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/objects",
    tags=["Objects"],
)


@router.get("/{area}/{name}", summary="Получить изображение из хранилища")
async def get_object(
    area: str,
    name: str,
    token: Optional[str] = Query(None),
    storage: StorageService = Depends(get_storage_service)
):
    """
    Отдает байты объекта с сохраненным content type.

    В URL указывается имя папки области (как в imagePath). Если включены
    подписанные ссылки, требуется действующий токен чтения.
    """
    logical_area = storage.area_for_directory(area)
    if logical_area is None:
        raise StorageError(ErrorKind.NOT_FOUND, "Изображение не найдено", f"{area}/{name}")

    if storage.requires_token and not storage.verify_token(logical_area, name, token):
        raise UnauthorizedError("Недействительная ссылка на изображение", "Срок действия ссылки истек или токен неверен")

    data, content_type = await storage.read(logical_area, name)
    return Response(content=data, media_type=content_type)
