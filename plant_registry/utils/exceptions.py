from enum import Enum
from typing import Optional

from fastapi import status

DETAILS_MAX_LENGTH = 200


def short_details(value: object, limit: int = DETAILS_MAX_LENGTH) -> str:
    """Короткая диагностическая строка для поля details"""
    text = str(value)
    return text if len(text) <= limit else text[:limit - 3] + "..."


class ErrorCode(str, Enum):
    INVALID_REQUEST = "INVALID_REQUEST"
    NOT_A_PLANT = "NOT_A_PLANT"
    UNAUTHORIZED = "UNAUTHORIZED"
    PLANT_NOT_FOUND = "PLANT_NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    DATABASE_ERROR = "DATABASE_ERROR"
    AI_SERVICE_ERROR = "AI_SERVICE_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorKind(str, Enum):
    """Закрытый набор транспортных ошибок внешних сервисов"""
    CONNECTION_REFUSED = "connection_refused"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    VALIDATION_FAILURE = "validation_failure"
    UPSTREAM_SCHEMA_VIOLATION = "upstream_schema_violation"
    UPSTREAM_FAULT = "upstream_fault"
    CONFLICT = "conflict"


UNREACHABLE_KINDS = (ErrorKind.CONNECTION_REFUSED, ErrorKind.TIMEOUT)


# ОШИБКИ ЗАПРОСА

class ApiError(Exception):
    """Ошибка, которая напрямую отображается в ответ API"""
    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str = "Внутренняя ошибка сервера", details: Optional[str] = None):
        self.message = message
        self.details = details
        super().__init__(self.message)


class InvalidRequestError(ApiError):
    """Некорректные входные данные"""
    code = ErrorCode.INVALID_REQUEST
    status_code = status.HTTP_400_BAD_REQUEST


class NotAPlantError(ApiError):
    """На изображении не обнаружено растение"""
    code = ErrorCode.NOT_A_PLANT
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, reason: str = "", confidence: Optional[float] = None):
        self.reason = reason
        self.confidence = confidence
        details = reason
        if confidence is not None:
            details = f"{reason} (уверенность: {confidence})" if reason else f"уверенность: {confidence}"
        super().__init__("Загруженное изображение не является растением", short_details(details) or None)


class PlantNotFoundError(ApiError):
    code = ErrorCode.PLANT_NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str = "Растение не найдено", details: Optional[str] = None):
        super().__init__(message, details)


class UnauthorizedError(ApiError):
    code = ErrorCode.UNAUTHORIZED
    status_code = status.HTTP_401_UNAUTHORIZED


class InternalError(ApiError):
    pass


# ОШИБКИ ВНЕШНИХ СЕРВИСОВ

class ServiceError(Exception):
    """Ошибка внешнего сервиса с классифицированной причиной"""
    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    default_message: str = "Ошибка внешнего сервиса"

    def __init__(self, kind: ErrorKind, message: Optional[str] = None, details: Optional[str] = None):
        self.kind = kind
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        if self.kind in UNREACHABLE_KINDS:
            return status.HTTP_503_SERVICE_UNAVAILABLE
        return status.HTTP_502_BAD_GATEWAY

    @property
    def error_code(self) -> ErrorCode:
        return self.code


class StorageError(ServiceError):
    """Исключение при работе с хранилищем изображений"""
    code = ErrorCode.STORAGE_ERROR
    default_message = "Ошибка сервиса хранения изображений"

    @property
    def status_code(self) -> int:
        if self.kind == ErrorKind.NOT_FOUND:
            return status.HTTP_404_NOT_FOUND
        return super().status_code


class ClassifierError(ServiceError):
    """Исключение при классификации"""
    code = ErrorCode.AI_SERVICE_ERROR
    default_message = "Ошибка сервиса идентификации растений"


class DatabaseError(ServiceError):
    """Исключение при работе с базой данных"""
    code = ErrorCode.DATABASE_ERROR
    default_message = "Ошибка базы данных"

    @property
    def status_code(self) -> int:
        if self.kind in UNREACHABLE_KINDS:
            return status.HTTP_503_SERVICE_UNAVAILABLE
        if self.kind == ErrorKind.CONFLICT:
            return status.HTTP_409_CONFLICT
        return status.HTTP_500_INTERNAL_SERVER_ERROR

    @property
    def error_code(self) -> ErrorCode:
        # Нераспознанные сбои БД отдаются как внутренняя ошибка
        if self.kind in UNREACHABLE_KINDS or self.kind == ErrorKind.CONFLICT:
            return self.code
        return ErrorCode.INTERNAL_ERROR
