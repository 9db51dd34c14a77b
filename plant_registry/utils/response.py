from typing import Any, Dict, Optional, Union

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .exceptions import ApiError, ErrorCode, ServiceError, short_details


def _dump(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(data, dict):
        return {key: _dump(value) for key, value in data.items()}
    if isinstance(data, (list, tuple)):
        return [_dump(item) for item in data]
    return data


def success_response(data: Union[BaseModel, Dict[str, Any]], status_code: int = status.HTTP_200_OK) -> JSONResponse:
    """Успешный ответ: {"success": true, "data": {...}}"""
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"success": True, "data": _dump(data)}),
    )


def error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[str] = None
) -> JSONResponse:
    """Ответ с ошибкой: {"success": false, "error": {"code", "message", "details"?}}"""
    error: Dict[str, Any] = {"code": code.value, "message": message}
    if details:
        error["details"] = short_details(details)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error},
    )


def validation_error(message: str, details: Optional[str] = None) -> JSONResponse:
    return error_response(ErrorCode.INVALID_REQUEST, message, status.HTTP_400_BAD_REQUEST, details)


def internal_error(message: str = "Внутренняя ошибка сервера", details: Optional[str] = None) -> JSONResponse:
    return error_response(ErrorCode.INTERNAL_ERROR, message, status.HTTP_500_INTERNAL_SERVER_ERROR, details)


def api_error_response(exc: ApiError) -> JSONResponse:
    return error_response(exc.code, exc.message, exc.status_code, exc.details)


def service_error_response(exc: ServiceError) -> JSONResponse:
    return error_response(exc.error_code, exc.message, exc.status_code, exc.details)
