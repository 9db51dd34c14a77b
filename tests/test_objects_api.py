import pytest
from fastapi.testclient import TestClient

from plant_registry.config import StorageConfig
from plant_registry.main import create_app
from plant_registry.models import Plant
from plant_registry.services import StorageService, AREA_PERMANENT

from conftest import FUNCTION_KEY, JPEG_BYTES, PLANT_VERDICT, local_path


@pytest.fixture
def signed_client(tmp_path, settings, vision):
    storage_config = StorageConfig(root=tmp_path / "signed", signed_urls=True, signing_key="secret")
    signed_settings = settings.model_copy(update={"storage": storage_config})
    app = create_app(signed_settings, storage=StorageService(storage_config), vision=vision)
    with TestClient(app, headers={"x-functions-key": FUNCTION_KEY}) as test_client:
        yield test_client


def test_serve_uploaded_image(client, upload_image):
    image = upload_image()

    response = client.get(local_path(image), headers={"x-functions-key": ""})

    assert response.status_code == 200
    assert response.content == JPEG_BYTES
    assert response.headers["content-type"] == "image/jpeg"


def test_missing_object(client, storage):
    for path in ("/objects/images/missing.jpg", "/objects/unknown/missing.jpg"):
        response = client.get(path)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "STORAGE_ERROR"


def test_signed_urls(signed_client, fake_openai):
    fake_openai.reply(PLANT_VERDICT)
    upload = signed_client.post("/images/upload", files={"image": ("sakura.jpg", JPEG_BYTES, "image/jpeg")})
    image = upload.json()["data"]["imagePath"]
    assert "?token=" in image

    response = signed_client.get(local_path(image))
    assert response.status_code == 200
    assert response.content == JPEG_BYTES

    unsigned = local_path(image).split("?", 1)[0]
    response = signed_client.get(unsigned)
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "UNAUTHORIZED"

    response = signed_client.get(f"{unsigned}?token=forged")
    assert response.status_code == 401


def test_signed_plant_records_store_canonical_url(signed_client, fake_openai):
    fake_openai.reply(PLANT_VERDICT)
    upload = signed_client.post("/images/upload", files={"image": ("sakura.jpg", JPEG_BYTES, "image/jpeg")})
    image = upload.json()["data"]["imagePath"]

    saved = signed_client.post("/plants/save", json={
        "name": "Sakura",
        "characteristics": "pink flowers in spring",
        "confidence": 95.5,
        "imagePath": image,
    })
    assert saved.status_code == 201

    listed = signed_client.get("/plants").json()["data"]["plants"][0]["imagePath"]
    assert listed.split("?", 1)[0] == image.split("?", 1)[0]
    assert "?token=" in listed

    # Подписанный URL из списка можно сразу использовать для загрузки изображения
    assert signed_client.get(local_path(listed)).status_code == 200

    plant_id = saved.json()["data"]["plant"]["id"]
    app = signed_client.app

    async def stored_image_path():
        async with app.state.session_factory() as session:
            return (await session.get(Plant, plant_id)).image_path

    assert signed_client.portal.call(stored_image_path) == image.split("?", 1)[0]
    assert app.state.storage.object_ref(listed)[0] == AREA_PERMANENT
