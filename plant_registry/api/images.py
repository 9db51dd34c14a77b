import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status

from ..config.settings import Settings
from ..services import UploadService
from ..utils.exceptions import ApiError, ServiceError, InvalidRequestError, InternalError, short_details
from ..utils.response import success_response
from .deps import get_settings, get_upload_service, limiter, rate_limit_disabled, CLASSIFIER_RATE_LIMIT

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/images",
    tags=["Images"],
)


@router.post("/upload", status_code=status.HTTP_201_CREATED, summary="Загрузка изображения с определением растения")
@limiter.limit(CLASSIFIER_RATE_LIMIT, exempt_when=rate_limit_disabled)
async def upload_image(
    request: Request,
    image: Optional[UploadFile] = File(None),
    context_info: Optional[str] = Form(None, alias="contextInfo"),
    upload_service: UploadService = Depends(get_upload_service),
    settings: Settings = Depends(get_settings)
):
    """
    Загрузка изображения растения

    Изображение сохраняется во временную область, проверяется классификатором
    и, если на нем растение, переносится в постоянную область. Запись в БД
    не создается: клиент сохраняет растение через POST /plants/save.

    Args:
        image: файл изображения (JPEG, PNG, WebP, GIF)
        context_info: дополнительная информация для классификатора

    Returns:
        imagePath, fileName, contentType, fileSize и identificationResult

    Raises:
        InvalidRequestError: запрос не multipart или файл не передан
        NotAPlantError: на изображении нет растения
    """
    request_content_type = request.headers.get("content-type", "")
    if not request_content_type.lower().startswith("multipart/form-data"):
        raise InvalidRequestError("Неверный формат запроса", "Ожидается multipart/form-data")

    if image is None or not image.filename:
        raise InvalidRequestError("Изображение не передано", "Ожидается файл в поле image")

    max_file_size = settings.validation.max_file_size
    try:
        contents = await image.read(max_file_size + 1)

        logger.info(f"Получен файл: {image.filename} ({image.content_type})")
        logger.debug(f"Размер файла: {len(contents)} bytes")

        # Загрузка продолжается при разрыве соединения, чтобы не оставить временных файлов
        result = await asyncio.shield(
            upload_service.process_upload(contents, image.filename, image.content_type, context_info)
        )
        return success_response(result, status.HTTP_201_CREATED)

    except (ApiError, ServiceError):
        raise

    except Exception as e:
        logger.exception(
            f"Неожиданная ошибка при обработке загрузки: {e}\n"
            f"Тип файла: {image.content_type}\n"
            f"Имя файла: {image.filename}"
        )
        raise InternalError("Не удалось обработать изображение", short_details(e)) from e
    finally:
        await image.close()
