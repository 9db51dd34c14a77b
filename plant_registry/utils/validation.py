import re
from typing import Optional

from pydantic import AnyUrl, TypeAdapter, ValidationError

from ..config.settings import ValidationLimits
from .exceptions import InvalidRequestError

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

INVALID_UUID_MESSAGE = "Укажите ID в формате UUID"
INVALID_URL_MESSAGE = "Укажите корректный URL"

_url_adapter = TypeAdapter(AnyUrl)


def is_valid_uuid(value: Optional[str]) -> bool:
    return bool(value) and UUID_PATTERN.match(value) is not None


def is_valid_url(value: Optional[str]) -> bool:
    """Синтаксическая проверка URL (схема обязательна)"""
    if not value or not isinstance(value, str):
        return False
    try:
        _url_adapter.validate_python(value)
    except ValidationError:
        return False
    return True


def is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def is_valid_image_content_type(content_type: Optional[str], limits: ValidationLimits) -> bool:
    if not content_type:
        return False
    allowed = {item.lower() for item in limits.allowed_content_types}
    return content_type.lower() in allowed


def is_valid_file_size(size: int, limits: ValidationLimits) -> bool:
    return 0 < size <= limits.max_file_size


def is_valid_confidence(value: float, limits: ValidationLimits) -> bool:
    return limits.confidence_min <= value <= limits.confidence_max


def require_uuid(plant_id: Optional[str]) -> str:
    if not plant_id:
        raise InvalidRequestError("Не указан ID растения")
    if not is_valid_uuid(plant_id):
        raise InvalidRequestError("Некорректный формат ID растения", INVALID_UUID_MESSAGE)
    return plant_id


def _check_max_length(value: Optional[str], limit: int, message: str) -> None:
    if value is not None and len(value) > limit:
        raise InvalidRequestError(message.format(limit=limit))


def _check_confidence(value: float, limits: ValidationLimits) -> None:
    if not is_valid_confidence(value, limits):
        raise InvalidRequestError(
            f"Уверенность должна быть числом от {limits.confidence_min:g} до {limits.confidence_max:g}"
        )


def _check_image_path(image_path: Optional[str]) -> None:
    if is_blank(image_path):
        raise InvalidRequestError("Не указан путь к изображению")
    if not is_valid_url(image_path):
        raise InvalidRequestError("Некорректный формат пути к изображению", INVALID_URL_MESSAGE)


def validate_plant_create(plant, limits: ValidationLimits) -> None:
    """
    Проверка запроса на сохранение растения

    Args:
        plant: PlantCreate
        limits: ограничения валидации

    Raises:
        InvalidRequestError: при первом нарушенном правиле
    """
    if is_blank(plant.name):
        raise InvalidRequestError("Не указано название растения")
    if is_blank(plant.characteristics):
        raise InvalidRequestError("Не указаны характеристики растения")
    if is_blank(plant.image_path):
        raise InvalidRequestError("Не указан путь к изображению")
    _check_confidence(plant.confidence, limits)

    max_length = limits.max_length
    _check_max_length(plant.name, max_length.name, "Название растения должно быть не длиннее {limit} символов")
    _check_max_length(plant.scientific_name, max_length.scientific_name,
                      "Научное название должно быть не длиннее {limit} символов")
    _check_max_length(plant.family_name, max_length.family_name,
                      "Название семейства должно быть не длиннее {limit} символов")
    _check_max_length(plant.description, max_length.description,
                      "Описание должно быть не длиннее {limit} символов")
    _check_max_length(plant.characteristics, max_length.characteristics,
                      "Характеристики должны быть не длиннее {limit} символов")
    _check_image_path(plant.image_path)


def validate_plant_update(plant, limits: ValidationLimits) -> None:
    """Проверка запроса на обновление растения (imagePath, confidence)"""
    if is_blank(plant.image_path):
        raise InvalidRequestError("Не указан путь к изображению")
    _check_confidence(plant.confidence, limits)
    _check_image_path(plant.image_path)


def validate_image_upload(content_type: Optional[str], size: int, limits: ValidationLimits) -> None:
    """
    Проверка загружаемого изображения до любых сетевых вызовов

    Raises:
        InvalidRequestError: неподдерживаемый тип или недопустимый размер
    """
    if not is_valid_image_content_type(content_type, limits):
        raise InvalidRequestError(
            "Неподдерживаемый формат изображения",
            "Допускаются только файлы JPEG, PNG, WebP и GIF",
        )
    if not is_valid_file_size(size, limits):
        if size <= 0:
            raise InvalidRequestError("Файл пуст")
        size_mb = limits.max_file_size / (1024 * 1024)
        raise InvalidRequestError(
            "Размер файла слишком большой",
            f"Размер файла не должен превышать {size_mb:.0f}MB",
        )
