import logging
from typing import Optional

from ..config.settings import ValidationLimits
from ..schemas import UploadResult
from ..utils.exceptions import InvalidRequestError, NotAPlantError
from ..utils.validation import validate_image_upload
from .storage_service import StorageService
from .vision_service import VisionService

logger = logging.getLogger(__name__)


class UploadService:
    def __init__(self, storage: StorageService, vision: VisionService, limits: ValidationLimits):
        """
        Загрузка изображения с определением растения

        Args:
            storage: хранилище изображений
            vision: клиент классификатора
            limits: ограничения на тип и размер файла
        """
        self.storage = storage
        self.vision = vision
        self.limits = limits

    async def process_upload(
        self,
        data: bytes,
        file_name: str,
        content_type: Optional[str],
        context_info: Optional[str] = None
    ) -> UploadResult:
        """
        Полный цикл загрузки: временное сохранение -> классификация ->
        перенос в постоянную область или удаление

        Логика работы:
        1. Проверяет тип и размер файла (до любых обращений к сервисам)
        2. Сохраняет изображение во временную область
        3. Проверяет ссылку на временный объект
        4. Отправляет изображение в классификатор
        5. Если это не растение или классификация не удалась, удаляет временный объект
        6. Если это растение, переносит объект в постоянную область

        В БД ничего не записывается: сохранение растения выполняет клиент
        отдельным запросом.

        Args:
            data: байты изображения
            file_name: исходное имя файла
            content_type: заявленный тип содержимого
            context_info: дополнительная информация для классификатора

        Returns:
            UploadResult с постоянным URL и результатом классификации

        Raises:
            InvalidRequestError: неподдерживаемый файл или некорректная ссылка
            NotAPlantError: на изображении нет растения
            StorageError: ошибка хранилища
            ClassifierError: ошибка классификатора
        """
        validate_image_upload(content_type, len(data), self.limits)

        temp = await self.storage.put_temporary(data, file_name, content_type)
        logger.info(f"Временное сохранение завершено: {temp.url}")

        temp_url = self.storage.public_url(temp.url)
        if not self.vision.validate_image(temp_url):
            await self.storage.delete_quietly(temp.url, trigger="invalid_reference")
            raise InvalidRequestError("Не удалось проанализировать изображение", "Некорректный URL изображения")

        try:
            result = await self.vision.classify(temp_url, context_info)
        except Exception:
            # Основная ошибка пробрасывается, ошибка очистки только логируется
            await self.storage.delete_quietly(temp.url, trigger="classification_failed")
            raise

        if not result.is_plant:
            await self.storage.delete_quietly(temp.url, trigger="not_a_plant")
            logger.info(f"Изображение {file_name} определено как не растение: {result.reason}")
            raise NotAPlantError(result.reason, result.confidence)

        permanent_url = await self.storage.move_temporary_to_permanent(temp.url)
        logger.info(f"Постоянное сохранение завершено: {permanent_url}")

        return UploadResult(
            image_path=self.storage.public_url(permanent_url),
            file_name=file_name,
            content_type=content_type,
            file_size=len(data),
            identification_result=result,
        )
