import httpx
import pytest
from openai import APIConnectionError, APITimeoutError, APIStatusError

from plant_registry.config import ClassifierConfig
from plant_registry.services import VisionService
from plant_registry.utils.exceptions import ClassifierError, ErrorKind

from conftest import FakeOpenAI, PLANT_VERDICT, NOT_PLANT_VERDICT

IMAGE_URL = "http://localhost:8000/objects/temp/abc.jpg"
OPENAI_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def candidate(name: str, confidence: float) -> dict:
    return {"name": name, "characteristics": f"признаки {name}", "confidence": confidence}


async def test_classify_plant(vision, fake_openai):
    result = await vision.classify(IMAGE_URL)

    assert result.is_plant is True
    assert result.confidence == 96.5
    assert result.reason == PLANT_VERDICT["reason"]
    assert [c.scientific_name for c in result.candidates] == ["Prunus serrulata", "Prunus cerasus"]
    assert len(fake_openai.calls) == 1


async def test_request_parameters(vision, fake_openai):
    await vision.classify(IMAGE_URL, "Растет на балконе")

    call = fake_openai.calls[0]
    assert call["model"] == "gpt-4o-mini"
    assert call["max_tokens"] == 1000
    assert call["temperature"] == 0.1
    assert call["response_format"] == {"type": "json_object"}

    image_part = call["messages"][0]["content"][1]
    assert image_part == {"type": "image_url", "image_url": {"url": IMAGE_URL, "detail": "low"}}
    assert "Растет на балконе" in fake_openai.prompt()


def test_prompt_without_context(vision):
    prompt = vision.build_prompt()

    assert "{max_candidates}" not in prompt
    assert "до 3 наиболее вероятных кандидатов" in prompt
    assert "Дополнительная информация" not in vision.build_prompt("   ")


async def test_candidates_sorted_and_capped(vision, fake_openai):
    fake_openai.reply({
        "isPlant": True,
        "confidence": 90,
        "reason": "Листья",
        "plantAnalysis": {"candidates": [
            candidate("Фикус", 30),
            candidate("Монстера", 85.5),
            candidate("Филодендрон", 60),
            candidate("Потос", 10),
        ]},
    })

    result = await vision.classify(IMAGE_URL)

    assert [c.name for c in result.candidates] == ["Монстера", "Филодендрон", "Фикус"]


async def test_not_a_plant_has_no_candidates(vision, fake_openai):
    fake_openai.reply({
        "isPlant": False,
        "confidence": 99,
        "reason": "Автомобиль",
        "plantAnalysis": {"candidates": [candidate("Фикус", 30)]},
    })

    result = await vision.classify(IMAGE_URL)

    assert result.is_plant is False
    assert result.candidates == []


async def test_not_a_plant_verdict(vision, fake_openai):
    fake_openai.reply(NOT_PLANT_VERDICT)

    result = await vision.classify(IMAGE_URL)

    assert result.is_plant is False
    assert result.reason == "На изображении кошка"


@pytest.mark.parametrize("content", [
    "",
    "это не JSON",
    "[1, 2, 3]",
    '{"isPlant": "yes", "confidence": 90, "reason": "x"}',
    '{"isPlant": true, "confidence": 150, "reason": "x"}',
    '{"isPlant": true, "confidence": "90", "reason": "x"}',
    '{"isPlant": true, "reason": "x"}',
    '{"isPlant": true, "confidence": 90, "reason": "x", "plantAnalysis": {"candidates": "Фикус"}}',
    '{"isPlant": true, "confidence": 90, "reason": "x", '
    '"plantAnalysis": {"candidates": [{"characteristics": "листья", "confidence": 50}]}}',
    '{"isPlant": true, "confidence": 90, "reason": "x", '
    '"plantAnalysis": {"candidates": [{"name": "Фикус", "characteristics": "листья", "confidence": "high"}]}}',
])
async def test_schema_violations(vision, fake_openai, content):
    fake_openai.reply(content)

    with pytest.raises(ClassifierError) as exc_info:
        await vision.classify(IMAGE_URL)

    assert exc_info.value.kind == ErrorKind.UPSTREAM_SCHEMA_VIOLATION
    assert exc_info.value.status_code == 502


@pytest.mark.parametrize("error,kind,status_code", [
    (APITimeoutError(request=OPENAI_REQUEST), ErrorKind.TIMEOUT, 503),
    (APIConnectionError(request=OPENAI_REQUEST), ErrorKind.CONNECTION_REFUSED, 503),
    (
        APIStatusError("Internal server error", response=httpx.Response(500, request=OPENAI_REQUEST), body=None),
        ErrorKind.UPSTREAM_FAULT,
        502,
    ),
])
async def test_transport_errors(vision, fake_openai, error, kind, status_code):
    fake_openai.fail(error)

    with pytest.raises(ClassifierError) as exc_info:
        await vision.classify(IMAGE_URL)

    assert exc_info.value.kind == kind
    assert exc_info.value.status_code == status_code


def test_validate_image(vision):
    assert vision.validate_image(IMAGE_URL)
    assert vision.validate_image(f"{IMAGE_URL}?token=abc")
    assert not vision.validate_image("abc.jpg")
    assert not vision.validate_image("")


def test_azure_deployment_used_as_model():
    config = ClassifierConfig(
        azure_endpoint="https://example.openai.azure.com",
        azure_api_key="key",
        azure_deployment="gpt-4o-vision",
    )
    service = VisionService(config, client=FakeOpenAI())
    assert service.model == "gpt-4o-vision"


def test_client_created_lazily():
    service = VisionService(ClassifierConfig(api_key="sk-test"))
    assert service._client is None
    assert service.client is service.client
