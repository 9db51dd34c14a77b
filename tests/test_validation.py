import uuid

import pytest

from plant_registry.config import ValidationLimits
from plant_registry.schemas import PlantCreate, PlantUpdate
from plant_registry.utils.exceptions import InvalidRequestError
from plant_registry.utils.validation import (is_valid_uuid, is_valid_url, is_valid_image_content_type,
                                             is_valid_file_size, is_valid_confidence, require_uuid,
                                             validate_plant_create, validate_plant_update,
                                             validate_image_upload)

LIMITS = ValidationLimits()


def make_plant(**overrides) -> PlantCreate:
    data = {
        "name": "Sakura",
        "characteristics": "pink flowers in spring",
        "confidence": 95.5,
        "image_path": "https://x/sakura.jpg",
    }
    data.update(overrides)
    return PlantCreate(**data)


def test_uuid_format():
    assert is_valid_uuid(str(uuid.uuid4()))
    assert is_valid_uuid(str(uuid.uuid4()).upper())
    assert not is_valid_uuid("not-a-uuid")
    assert not is_valid_uuid("")
    assert not is_valid_uuid(None)


def test_url_format():
    assert is_valid_url("https://x/sakura.jpg")
    assert is_valid_url("http://localhost:8000/objects/images/a.jpg?token=abc")
    assert not is_valid_url("sakura.jpg")
    assert not is_valid_url("")
    assert not is_valid_url(None)


@pytest.mark.parametrize("content_type,expected", [
    ("image/jpeg", True),
    ("image/jpg", True),
    ("IMAGE/PNG", True),
    ("image/webp", True),
    ("image/gif", True),
    ("text/plain", False),
    ("image/heic", False),
    (None, False),
])
def test_image_content_type(content_type, expected):
    assert is_valid_image_content_type(content_type, LIMITS) is expected


def test_file_size_bounds():
    assert not is_valid_file_size(0, LIMITS)
    assert is_valid_file_size(1, LIMITS)
    assert is_valid_file_size(LIMITS.max_file_size, LIMITS)
    assert not is_valid_file_size(LIMITS.max_file_size + 1, LIMITS)


def test_confidence_bounds():
    assert is_valid_confidence(0, LIMITS)
    assert is_valid_confidence(100, LIMITS)
    assert not is_valid_confidence(-0.1, LIMITS)
    assert not is_valid_confidence(100.5, LIMITS)


def test_require_uuid():
    plant_id = str(uuid.uuid4())
    assert require_uuid(plant_id) == plant_id

    with pytest.raises(InvalidRequestError) as exc_info:
        require_uuid("123")
    assert exc_info.value.details == "Укажите ID в формате UUID"


def test_valid_plant_passes():
    validate_plant_create(make_plant(), LIMITS)
    validate_plant_create(make_plant(scientific_name="Prunus serrulata", family_name="Rosaceae",
                                     description="Декоративная вишня"), LIMITS)


@pytest.mark.parametrize("overrides,message", [
    ({"name": "   "}, "Не указано название растения"),
    ({"characteristics": ""}, "Не указаны характеристики растения"),
    ({"image_path": " "}, "Не указан путь к изображению"),
    ({"confidence": 100.5}, "Уверенность должна быть числом от 0 до 100"),
    ({"confidence": -1.0}, "Уверенность должна быть числом от 0 до 100"),
    ({"name": "a" * 101}, "Название растения должно быть не длиннее 100 символов"),
    ({"scientific_name": "a" * 151}, "Научное название должно быть не длиннее 150 символов"),
    ({"description": "a" * 1001}, "Описание должно быть не длиннее 1000 символов"),
    ({"image_path": "sakura.jpg"}, "Некорректный формат пути к изображению"),
])
def test_invalid_plant_rejected(overrides, message):
    with pytest.raises(InvalidRequestError) as exc_info:
        validate_plant_create(make_plant(**overrides), LIMITS)
    assert exc_info.value.message == message


def test_custom_limits_are_used():
    limits = ValidationLimits(confidence_max=1)
    with pytest.raises(InvalidRequestError):
        validate_plant_create(make_plant(confidence=50.0), limits)


def test_plant_update_rules():
    validate_plant_update(PlantUpdate(image_path="https://x/new.jpg", confidence=80.0), LIMITS)

    with pytest.raises(InvalidRequestError):
        validate_plant_update(PlantUpdate(image_path="https://x/new.jpg", confidence=101.0), LIMITS)
    with pytest.raises(InvalidRequestError):
        validate_plant_update(PlantUpdate(image_path="not a url", confidence=80.0), LIMITS)


def test_image_upload_rules():
    validate_image_upload("image/jpeg", 1024, LIMITS)

    with pytest.raises(InvalidRequestError) as exc_info:
        validate_image_upload("text/plain", 1024, LIMITS)
    assert exc_info.value.message == "Неподдерживаемый формат изображения"

    with pytest.raises(InvalidRequestError) as exc_info:
        validate_image_upload("image/png", 0, LIMITS)
    assert exc_info.value.message == "Файл пуст"

    with pytest.raises(InvalidRequestError) as exc_info:
        validate_image_upload("image/png", LIMITS.max_file_size + 1, LIMITS)
    assert exc_info.value.details == "Размер файла не должен превышать 10MB"
