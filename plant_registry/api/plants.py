import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config.settings import Settings
from ..database import (get_async_db, list_plants, get_plant_by_id, get_plant_by_name,
                        create_plant, update_plant, delete_plant)
from ..models import Plant
from ..schemas import (PlantCreate, PlantUpdate, PlantOut, PlantSummary, PlantList,
                       DuplicatePlant, DuplicateCheckResult, IdentifyRequest, IdentifyResponse,
                       MessageResponse)
from ..services import StorageService, VisionService, AREA_TEMPORARY
from ..utils.exceptions import (ApiError, ServiceError, InvalidRequestError, PlantNotFoundError,
                                InternalError, short_details)
from ..utils.response import success_response
from ..utils.validation import (require_uuid, validate_plant_create, validate_plant_update,
                                is_blank, is_valid_url, INVALID_URL_MESSAGE)
from .deps import (get_settings, get_storage_service, get_vision_service, limiter, rate_limit_disabled,
                   CLASSIFIER_RATE_LIMIT)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/plants",
    tags=["Plants"],
)


def plant_out(plant: Plant, storage: StorageService) -> PlantOut:
    out = PlantOut.model_validate(plant)
    return out.model_copy(update={"image_path": storage.public_url(out.image_path)})


def normalize_image_path(image_path: str, storage: StorageService) -> str:
    """
    URL изображения для записи в БД

    Растение не может ссылаться на изображение во временной области.
    В БД хранится URL без токена, подпись добавляется при каждом ответе.
    """
    ref = storage.object_ref(image_path)
    if ref is not None and ref[0] == AREA_TEMPORARY:
        raise InvalidRequestError(
            "Изображение еще не перенесено в постоянное хранилище",
            "Используйте imagePath из ответа на загрузку изображения",
        )
    return storage.canonical_url(image_path)


@router.get("", summary="Список всех растений")
async def get_plants(
    db: AsyncSession = Depends(get_async_db),
    storage: StorageService = Depends(get_storage_service)
):
    """Все растения, отсортированные по дате создания (новые первыми)"""
    logger.info("Запрос списка растений")
    try:
        plants = await list_plants(db)
        summaries = [
            PlantSummary.model_validate(plant).model_copy(
                update={"image_path": storage.public_url(plant.image_path)}
            )
            for plant in plants
        ]
        return success_response(PlantList(plants=summaries, total=len(summaries)))
    except (ApiError, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Неожиданная ошибка при получении списка растений: {e}", exc_info=True)
        raise InternalError("Не удалось получить список растений", short_details(e)) from e


@router.get("/check-duplicate", summary="Проверка наличия растения с таким же названием")
async def check_duplicate(
    name: Optional[str] = Query(None, description="Название растения"),
    db: AsyncSession = Depends(get_async_db),
    storage: StorageService = Depends(get_storage_service)
):
    """
    Проверяет, сохранено ли уже растение с точно таким же названием.

    Проверка носит рекомендательный характер: уникальность названия
    при сохранении не обеспечивается.
    """
    if is_blank(name):
        raise InvalidRequestError("Не указано название растения", "Параметр name обязателен")

    plant_name = name.strip()
    logger.info(f"Проверка дубликата: название='{plant_name}'")
    try:
        plant = await get_plant_by_name(db, plant_name)
        if plant is None:
            logger.info(f"Растение с названием '{plant_name}' не найдено")
            return success_response(DuplicateCheckResult(exists=False))

        duplicate = DuplicatePlant.model_validate(plant).model_copy(
            update={"image_path": storage.public_url(plant.image_path)}
        )
        logger.info(f"Найден дубликат: ID={plant.id}")
        return success_response(DuplicateCheckResult(exists=True, plant=duplicate))
    except (ApiError, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Неожиданная ошибка при проверке дубликата: {e}", exc_info=True)
        raise InternalError("Не удалось проверить дубликат", short_details(e)) from e


@router.post("/save", status_code=status.HTTP_201_CREATED, summary="Сохранить растение")
async def save_plant(
    plant_data: PlantCreate = Body(...),
    db: AsyncSession = Depends(get_async_db),
    storage: StorageService = Depends(get_storage_service),
    settings: Settings = Depends(get_settings)
):
    """
    Сохраняет растение после идентификации.

    Args:
        plant_data: Данные растения (imagePath из ответа на загрузку изображения)

    Returns:
        Созданное растение с новым ID
    """
    validate_plant_create(plant_data, settings.validation)
    plant_data = plant_data.model_copy(
        update={"image_path": normalize_image_path(plant_data.image_path, storage)}
    )

    logger.info(f"Сохранение растения: название='{plant_data.name}'")
    try:
        plant = await create_plant(db, plant_data)
        return success_response({"plant": plant_out(plant, storage)}, status.HTTP_201_CREATED)
    except (ApiError, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Неожиданная ошибка при сохранении растения: {e}", exc_info=True)
        raise InternalError("Не удалось сохранить растение", short_details(e)) from e


@router.post("/identify", summary="Идентификация растения по сохраненному изображению")
@limiter.limit(CLASSIFIER_RATE_LIMIT, exempt_when=rate_limit_disabled)
async def identify_plant(
    request: Request,
    identify_data: IdentifyRequest = Body(...),
    storage: StorageService = Depends(get_storage_service),
    vision: VisionService = Depends(get_vision_service)
):
    """
    Определяет растение на изображении, которое уже есть в хранилище.
    """
    if is_blank(identify_data.image_path):
        raise InvalidRequestError("Не указан URL изображения")
    if not is_valid_url(identify_data.image_path):
        raise InvalidRequestError("Некорректный формат URL изображения", INVALID_URL_MESSAGE)

    logger.info(
        f"Идентификация растения: изображение={identify_data.image_path}, "
        f"доп. информация={identify_data.context_info or 'нет'}"
    )
    try:
        if not await storage.exists(identify_data.image_path):
            raise InvalidRequestError("Изображение не найдено в хранилище",
                                      "Сначала загрузите изображение")

        image_url = storage.public_url(identify_data.image_path)
        if not vision.validate_image(image_url):
            raise InvalidRequestError("Не удалось проанализировать изображение", "Некорректный URL изображения")

        result = await vision.classify(image_url, identify_data.context_info)
        return success_response(IdentifyResponse(result=result))
    except (ApiError, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Неожиданная ошибка при идентификации растения: {e}", exc_info=True)
        raise InternalError("Не удалось идентифицировать растение", short_details(e)) from e


@router.get("/{plant_id}", summary="Получить растение по ID")
async def get_plant(
    plant_id: str,
    db: AsyncSession = Depends(get_async_db),
    storage: StorageService = Depends(get_storage_service)
):
    require_uuid(plant_id)
    logger.info(f"Запрос информации о растении с ID: {plant_id}")

    plant = await get_plant_by_id(db, plant_id)
    if plant is None:
        logger.warning(f"Растение с ID {plant_id} не найдено.")
        raise PlantNotFoundError("Указанное растение не найдено")

    return success_response({"plant": plant_out(plant, storage)})


@router.put("/{plant_id}", summary="Обновить изображение и уверенность растения")
async def update_plant_info(
    plant_id: str,
    plant_data: PlantUpdate = Body(...),
    db: AsyncSession = Depends(get_async_db),
    storage: StorageService = Depends(get_storage_service),
    settings: Settings = Depends(get_settings)
):
    """
    Обновляет растение. Если изображение изменилось, старое изображение
    удаляется из хранилища после успешного обновления записи.

    Raises:
        PlantNotFoundError: растение не найдено
    """
    require_uuid(plant_id)
    validate_plant_update(plant_data, settings.validation)
    plant_data = plant_data.model_copy(
        update={"image_path": normalize_image_path(plant_data.image_path, storage)}
    )

    logger.info(f"Обновление растения ID={plant_id}")
    try:
        plant = await get_plant_by_id(db, plant_id)
        if plant is None:
            logger.warning(f"Растение с ID {plant_id} не найдено.")
            raise PlantNotFoundError("Указанное растение не найдено")

        old_image_path = plant.image_path
        updated_plant = await update_plant(db, plant, plant_data)

        if not storage.same_object(old_image_path, updated_plant.image_path):
            # Ошибка удаления старого изображения не влияет на результат запроса
            await storage.delete_quietly(old_image_path, trigger="image_replaced")

        logger.info(f"Растение ID={plant_id} успешно обновлено.")
        return success_response({"plant": plant_out(updated_plant, storage)})
    except (ApiError, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Неожиданная ошибка при обновлении растения ID={plant_id}: {e}", exc_info=True)
        raise InternalError("Не удалось обновить растение", short_details(e)) from e


@router.delete("/{plant_id}", summary="Удалить растение")
async def remove_plant(
    plant_id: str,
    db: AsyncSession = Depends(get_async_db)
):
    require_uuid(plant_id)
    logger.info(f"Запрос на удаление растения ID={plant_id}")

    deleted = await delete_plant(db, plant_id)
    if not deleted:
        logger.info(f"Удаляемое растение не найдено: ID={plant_id}")
        raise PlantNotFoundError("Указанное растение не найдено")

    return success_response(MessageResponse(message="Растение успешно удалено"))
