import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, Field

PACKAGE_ROOT = Path(__file__).resolve().parent.parent
CONFIG_FILE = Path(__file__).resolve().parent / "config.yml"


class FieldLimits(BaseModel):
    """Максимальная длина строковых полей растения"""
    name: int = 100
    scientific_name: int = 150
    family_name: int = 100
    description: int = 1000
    characteristics: int = 500


class ValidationLimits(BaseModel):
    """Ограничения для загрузки файлов и данных растений"""
    max_file_size: int = 10 * 1024 * 1024
    allowed_content_types: List[str] = Field(
        default_factory=lambda: ["image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif"]
    )
    max_length: FieldLimits = Field(default_factory=FieldLimits)
    confidence_min: float = 0
    confidence_max: float = 100


class DatabaseConfig(BaseModel):
    url: str = "sqlite+aiosqlite:///./data/plant_registry.db"
    echo: bool = False


class StorageConfig(BaseModel):
    """Настройки хранилища изображений"""
    root: Path = Path("./data/objects")
    permanent_area: str = "images"
    temporary_area: str = "temp"
    public_base_url: str = "http://localhost:8000/objects"
    signed_urls: bool = False
    signing_key: Optional[str] = None
    signed_url_ttl_seconds: int = 24 * 60 * 60


class ClassifierConfig(BaseModel):
    """Настройки LLM-классификатора (OpenAI или Azure OpenAI)"""
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model: str = "gpt-4o-mini"
    azure_endpoint: Optional[str] = None
    azure_api_key: Optional[str] = None
    azure_deployment: Optional[str] = None
    api_version: str = "2024-02-15-preview"
    max_tokens: int = 1000
    temperature: float = 0.1
    timeout: float = 60
    max_candidates: int = 3
    image_detail: str = "low"

    @property
    def is_azure(self) -> bool:
        return bool(self.azure_endpoint)


class Settings(BaseModel):
    """Полная конфигурация приложения, вычисляется один раз при старте процесса"""
    validation: ValidationLimits = Field(default_factory=ValidationLimits)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    function_key: Optional[str] = None
    rate_limit_enabled: bool = True
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    log_file: Optional[str] = None


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


# Переменная окружения -> (путь в конфиге, преобразование)
ENV_OVERRIDES = {
    "MAX_FILE_SIZE": (("validation", "max_file_size"), int),
    "PLANT_NAME_MAX_LENGTH": (("validation", "max_length", "name"), int),
    "PLANT_SCIENTIFIC_NAME_MAX_LENGTH": (("validation", "max_length", "scientific_name"), int),
    "PLANT_FAMILY_NAME_MAX_LENGTH": (("validation", "max_length", "family_name"), int),
    "PLANT_DESCRIPTION_MAX_LENGTH": (("validation", "max_length", "description"), int),
    "PLANT_CHARACTERISTICS_MAX_LENGTH": (("validation", "max_length", "characteristics"), int),
    "DATABASE_URL": (("database", "url"), str),
    "DB_ECHO": (("database", "echo"), _env_bool),
    "STORAGE_ROOT": (("storage", "root"), str),
    "STORAGE_CONTAINER_NAME": (("storage", "permanent_area"), str),
    "TEMP_STORAGE_CONTAINER_NAME": (("storage", "temporary_area"), str),
    "PUBLIC_BASE_URL": (("storage", "public_base_url"), str),
    "STORAGE_SIGNED_URLS": (("storage", "signed_urls"), _env_bool),
    "STORAGE_SIGNING_KEY": (("storage", "signing_key"), str),
    "SIGNED_URL_TTL_SECONDS": (("storage", "signed_url_ttl_seconds"), int),
    "OPENAI_API_KEY": (("classifier", "api_key"), str),
    "OPENAI_BASE_URL": (("classifier", "base_url"), str),
    "OPENAI_MODEL": (("classifier", "model"), str),
    "OPENAI_TIMEOUT": (("classifier", "timeout"), float),
    "AZURE_OPENAI_ENDPOINT": (("classifier", "azure_endpoint"), str),
    "AZURE_OPENAI_API_KEY": (("classifier", "azure_api_key"), str),
    "AZURE_OPENAI_DEPLOYMENT_NAME": (("classifier", "azure_deployment"), str),
    "AZURE_OPENAI_API_VERSION": (("classifier", "api_version"), str),
    "FUNCTION_KEY": (("function_key",), str),
    "RATE_LIMIT_ENABLED": (("rate_limit_enabled",), _env_bool),
    "CORS_ORIGINS": (("cors_origins",), _env_list),
    "LOG_LEVEL": (("log_level",), str),
    "LOG_FILE": (("log_file",), str),
}


def _read_config_file(config_file: Path) -> Dict[str, Any]:
    """
    Чтение config.yml и приведение его к структуре Settings

    Args:
        config_file: путь к YAML-файлу

    Returns:
        Словарь, пригодный для Settings.model_validate
    """
    with open(config_file, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    validation = dict(raw.get("validation", {}))
    confidence = validation.pop("confidence", {}) or {}
    if "min" in confidence:
        validation["confidence_min"] = confidence["min"]
    if "max" in confidence:
        validation["confidence_max"] = confidence["max"]

    api = raw.get("api", {}) or {}
    data: Dict[str, Any] = {
        "validation": validation,
        "database": raw.get("database", {}) or {},
        "storage": raw.get("storage", {}) or {},
        "classifier": raw.get("classifier", {}) or {},
        "log_level": (raw.get("logging", {}) or {}).get("level", "INFO"),
    }
    for key in ("rate_limit_enabled", "cors_origins"):
        if key in api:
            data[key] = api[key]
    return data


def _apply_env_overrides(data: Dict[str, Any], environ: Mapping[str, str]) -> None:
    for env_name, (path, convert) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is None or value == "":
            continue
        target = data
        for key in path[:-1]:
            target = target.setdefault(key, {})
        target[path[-1]] = convert(value)


def load_settings(
    config_file: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None
) -> Settings:
    """
    Загрузка настроек: значения по умолчанию из config.yml,
    переопределения из переменных окружения

    Args:
        config_file: путь к YAML-файлу (по умолчанию config.yml пакета
            или PLANT_REGISTRY_CONFIG)
        environ: источник переменных окружения (по умолчанию os.environ)

    Returns:
        Settings: разрешённая конфигурация
    """
    environ = os.environ if environ is None else environ
    if config_file is None:
        config_file = Path(environ.get("PLANT_REGISTRY_CONFIG", CONFIG_FILE))

    data = _read_config_file(config_file) if config_file.exists() else {}
    _apply_env_overrides(data, environ)
    return Settings.model_validate(data)


def build_logging_config(level: str = "INFO", log_file: Optional[str] = None) -> Dict[str, Any]:
    """Конфигурация logging.config.dictConfig"""
    handlers = ["default"]
    config: Dict[str, Any] = {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'standard': {
                'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
            },
            'detailed': {
                'format': '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d: %(message)s'
            },
        },
        'handlers': {
            'default': {
                'level': level,
                'formatter': 'standard',
                'class': 'logging.StreamHandler',
            },
        },
        'loggers': {
            '': {  # root logger
                'handlers': handlers,
                'level': level,
                'propagate': True
            }
        }
    }
    if log_file:
        config['handlers']['error_file'] = {
            'level': 'ERROR',
            'formatter': 'detailed',
            'class': 'logging.FileHandler',
            'filename': log_file,
            'mode': 'a',
            'encoding': 'utf-8',
        }
        handlers.append('error_file')
    return config
