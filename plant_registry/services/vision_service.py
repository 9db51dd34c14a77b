import json
import logging
from typing import Any, Dict, List, Optional

from openai import (AsyncOpenAI, AsyncAzureOpenAI, OpenAIError,
                    APIConnectionError, APITimeoutError, APIStatusError)
from pydantic import ValidationError

from ..config.settings import ClassifierConfig
from ..schemas import ClassificationResult, ModelVerdict, SpeciesCandidate
from ..utils.exceptions import ClassifierError, ErrorKind, short_details
from ..utils.validation import is_valid_url

logger = logging.getLogger(__name__)

PLANT_IDENTIFICATION_PROMPT = """
Профессионально проанализируй это изображение и верни JSON строго в следующем формате:

{
  "isPlant": boolean,
  "confidence": number,
  "reason": "string",
  "plantAnalysis": {
    "candidates": [
      {
        "name": "название растения (на русском)",
        "scientificName": "научное название",
        "familyName": "семейство",
        "description": "подробное описание (на русском)",
        "characteristics": "внешние признаки (на русском)",
        "confidence": number
      }
    ]
  }
}

Критерии:
- isPlant: есть ли на изображении растение (или его часть)
- confidence: уверенность в том, что это растение (0-100)
- reason: краткое обоснование (на русском)

Считать растением:
- цветы, листья, стебли, корни, кору, плоды, семена
- деревья, травы, мхи, папоротники, суккуленты, кактусы
- овощи, зелень и другие растения

Не считать растением:
- людей, животных, здания, приготовленную еду, пейзажи без растений
- изображения, на которых растений нет совсем

Правило выбора названия для поля "name" (в порядке приоритета):
1. Если известен сорт, указать название сорта
2. Если сорт неизвестен, но известен вид, указать название вида
3. Если не удается определить и вид, указать название рода

Если это растение, верни до {max_candidates} наиболее вероятных кандидатов в порядке убывания уверенности.
Указывай точные научные названия и семейства.
Если это не растение, верни пустой список candidates.
"""


class VisionService:
    def __init__(self, config: ClassifierConfig, client: Optional[Any] = None):
        """
        Клиент мультимодальной модели для определения растений

        Args:
            config: настройки OpenAI / Azure OpenAI
            client: готовый асинхронный клиент (по умолчанию создается по конфигурации
                при первом запросе)
        """
        self.config = config
        self._client = client
        self.model = (config.azure_deployment or config.model) if config.is_azure else config.model

    @property
    def client(self):
        """Клиент OpenAI с ленивой инициализацией"""
        if self._client is None:
            try:
                self._client = self._create_client(self.config)
            except OpenAIError as e:
                logger.critical(f"Ошибка инициализации клиента OpenAI: {e}")
                raise ClassifierError(
                    ErrorKind.UPSTREAM_FAULT,
                    "Сервис идентификации растений не настроен",
                    short_details(e),
                ) from e
        return self._client

    @staticmethod
    def _create_client(config: ClassifierConfig):
        if config.is_azure:
            logger.info("Инициализация клиента Azure OpenAI...")
            return AsyncAzureOpenAI(
                api_key=config.azure_api_key,
                azure_endpoint=config.azure_endpoint,
                azure_deployment=config.azure_deployment,
                api_version=config.api_version,
                timeout=config.timeout,
            )
        logger.info("Инициализация клиента OpenAI...")
        return AsyncOpenAI(api_key=config.api_key, base_url=config.base_url, timeout=config.timeout)

    def validate_image(self, image_url: str) -> bool:
        """
        Проверка ссылки на изображение

        Только синтаксическая проверка URL: сама модель вернет ошибку,
        если изображение недоступно или повреждено.
        """
        return is_valid_url(image_url)

    def build_prompt(self, context_hint: Optional[str] = None) -> str:
        prompt = PLANT_IDENTIFICATION_PROMPT.replace("{max_candidates}", str(self.config.max_candidates))
        if context_hint and context_hint.strip():
            prompt += (
                "\nДополнительная информация от пользователя (учитывай ее при определении):\n"
                f"{context_hint.strip()}\n"
            )
        return prompt

    def build_messages(self, image_url: str, context_hint: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": self.build_prompt(context_hint)},
                    {
                        "type": "image_url",
                        "image_url": {
                            "url": image_url,
                            "detail": self.config.image_detail,  # экономия токенов
                        },
                    },
                ],
            }
        ]

    async def classify(self, image_url: str, context_hint: Optional[str] = None) -> ClassificationResult:
        """
        Определение, есть ли на изображении растение, и кандидаты вида

        Args:
            image_url: доступный модели URL изображения
            context_hint: дополнительная информация от пользователя

        Returns:
            ClassificationResult: вердикт, уверенность, обоснование и до трех кандидатов

        Raises:
            ClassifierError: при сетевой ошибке, ошибке API или некорректном ответе модели
        """
        content = await self._request_analysis(image_url, context_hint)
        verdict = self.parse_verdict(content)

        candidates: List[SpeciesCandidate] = []
        if verdict.is_plant and verdict.plant_analysis:
            candidates = sorted(
                verdict.plant_analysis.candidates,
                key=lambda candidate: candidate.confidence,
                reverse=True,
            )[:self.config.max_candidates]

        result = ClassificationResult(
            is_plant=verdict.is_plant,
            confidence=verdict.confidence,
            reason=verdict.reason,
            candidates=candidates,
        )
        logger.info(
            f"Классификация завершена: растение={result.is_plant}, "
            f"уверенность={result.confidence}, кандидатов={len(result.candidates)}"
        )
        return result

    async def _request_analysis(self, image_url: str, context_hint: Optional[str]) -> str:
        client = self.client
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=self.build_messages(image_url, context_hint),
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
                response_format={"type": "json_object"},
            )
        except APITimeoutError as e:
            logger.error(f"Превышено время ожидания ответа модели: {e}")
            raise ClassifierError(ErrorKind.TIMEOUT, "Сервис идентификации растений не отвечает",
                                  short_details(e)) from e
        except APIConnectionError as e:
            logger.error(f"Сервис идентификации растений недоступен: {e}")
            raise ClassifierError(ErrorKind.CONNECTION_REFUSED, "Не удалось подключиться к сервису идентификации растений",
                                  short_details(e)) from e
        except APIStatusError as e:
            logger.error(f"Ошибка API модели: status={e.status_code}, {e.message}")
            raise ClassifierError(ErrorKind.UPSTREAM_FAULT, "Ошибка сервиса идентификации растений",
                                  short_details(f"{e.status_code}: {e.message}")) from e
        except OpenAIError as e:
            logger.error(f"Ошибка клиента OpenAI: {e}", exc_info=True)
            raise ClassifierError(ErrorKind.UPSTREAM_FAULT, "Ошибка сервиса идентификации растений",
                                  short_details(e)) from e

        if not response.choices:
            raise ClassifierError(ErrorKind.UPSTREAM_SCHEMA_VIOLATION, "Пустой ответ модели")
        content = response.choices[0].message.content
        if not content:
            raise ClassifierError(ErrorKind.UPSTREAM_SCHEMA_VIOLATION, "Пустой ответ модели")
        return content

    @staticmethod
    def parse_verdict(content: str) -> ModelVerdict:
        """
        Разбор JSON-ответа модели без попыток частичного восстановления

        Raises:
            ClassifierError: UPSTREAM_SCHEMA_VIOLATION при любом нарушении схемы
        """
        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            logger.error(f"Ответ модели не является JSON: {e}")
            raise ClassifierError(ErrorKind.UPSTREAM_SCHEMA_VIOLATION, "Не удалось разобрать ответ модели",
                                  short_details(e)) from e
        if not isinstance(payload, dict):
            raise ClassifierError(ErrorKind.UPSTREAM_SCHEMA_VIOLATION, "Ответ модели не является JSON-объектом")
        try:
            return ModelVerdict.model_validate(payload)
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            logger.error(f"Ответ модели не соответствует схеме: {location}: {first['msg']}")
            raise ClassifierError(ErrorKind.UPSTREAM_SCHEMA_VIOLATION, "Ответ модели не соответствует схеме",
                                  short_details(f"{location}: {first['msg']}")) from e
