import json
import logging
from pathlib import Path
from types import SimpleNamespace
from typing import List
from urllib.parse import urlsplit

import pytest
from fastapi.testclient import TestClient

from plant_registry.config import Settings, DatabaseConfig, StorageConfig
from plant_registry.main import create_app
from plant_registry.services import StorageService, VisionService

logging.basicConfig(level=logging.ERROR, format='%(levelname)s: %(message)s')

FUNCTION_KEY = "test-function-key"

# Минимальный валидный JPEG (SOI + APP0 + EOI)
JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00\xff\xd9"

PLANT_VERDICT = {
    "isPlant": True,
    "confidence": 96.5,
    "reason": "На изображении видны цветы сакуры",
    "plantAnalysis": {
        "candidates": [
            {
                "name": "Сакура",
                "scientificName": "Prunus serrulata",
                "familyName": "Rosaceae",
                "description": "Декоративная вишня",
                "characteristics": "Розовые цветы весной",
                "confidence": 92.0
            },
            {
                "name": "Вишня",
                "scientificName": "Prunus cerasus",
                "familyName": "Rosaceae",
                "characteristics": "Белые цветы",
                "confidence": 40
            }
        ]
    }
}

NOT_PLANT_VERDICT = {
    "isPlant": False,
    "confidence": 97.0,
    "reason": "На изображении кошка",
    "plantAnalysis": {"candidates": []}
}


class FakeCompletions:
    """Заменяет client.chat.completions асинхронного клиента OpenAI"""

    def __init__(self):
        self.calls: List[dict] = []
        self.content = json.dumps(PLANT_VERDICT)
        self.error = None

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeOpenAI:
    def __init__(self):
        self.completions = FakeCompletions()
        self.chat = SimpleNamespace(completions=self.completions)

    def reply(self, payload) -> None:
        self.completions.content = payload if isinstance(payload, str) else json.dumps(payload)

    def fail(self, error: Exception) -> None:
        self.completions.error = error

    @property
    def calls(self) -> List[dict]:
        return self.completions.calls

    def image_url(self, index: int = -1) -> str:
        content = self.calls[index]["messages"][0]["content"]
        return content[1]["image_url"]["url"]

    def prompt(self, index: int = -1) -> str:
        return self.calls[index]["messages"][0]["content"][0]["text"]


def stored_names(storage: StorageService, area: str) -> List[str]:
    """Имена объектов в области (без служебных файлов)"""
    directory = Path(storage.root) / storage.area_dirs[area]
    return sorted(path.name for path in directory.iterdir() if not path.name.startswith("."))


def local_path(url: str) -> str:
    """Путь с параметрами запроса для запроса через TestClient"""
    parts = urlsplit(url)
    return f"{parts.path}?{parts.query}" if parts.query else parts.path


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database=DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'db' / 'test.db'}"),
        storage=StorageConfig(root=tmp_path / "objects"),
        function_key=FUNCTION_KEY,
        rate_limit_enabled=False,
    )


@pytest.fixture
def fake_openai():
    return FakeOpenAI()


@pytest.fixture
def storage(settings):
    return StorageService(settings.storage)


@pytest.fixture
def vision(settings, fake_openai):
    return VisionService(settings.classifier, client=fake_openai)


@pytest.fixture
def app(settings, storage, vision):
    return create_app(settings, storage=storage, vision=vision)


@pytest.fixture
def client(app):
    with TestClient(app, headers={"x-functions-key": FUNCTION_KEY}) as test_client:
        yield test_client


@pytest.fixture
def upload_image(client, fake_openai):
    """Загрузка изображения растения через API, возвращает imagePath"""
    def _upload(file_name: str = "sakura.jpg") -> str:
        fake_openai.reply(PLANT_VERDICT)
        response = client.post("/images/upload", files={"image": (file_name, JPEG_BYTES, "image/jpeg")})
        assert response.status_code == 201, response.text
        return response.json()["data"]["imagePath"]
    return _upload
