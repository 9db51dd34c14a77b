from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictStr
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Базовая схема: поля в snake_case, JSON в camelCase"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# РАСТЕНИЯ

class PlantCreate(CamelModel):
    """Схема для сохранения растения"""
    name: StrictStr
    scientific_name: Optional[StrictStr] = None
    family_name: Optional[StrictStr] = None
    description: Optional[StrictStr] = None
    characteristics: StrictStr
    confidence: StrictFloat
    image_path: StrictStr


class PlantUpdate(CamelModel):
    """Схема для обновления растения (полная замена изображения и уверенности)"""
    image_path: StrictStr
    confidence: StrictFloat


class PlantOut(CamelModel):
    """Схема для вывода растения"""
    id: str
    name: str
    scientific_name: Optional[str] = None
    family_name: Optional[str] = None
    description: Optional[str] = None
    characteristics: str
    confidence: float
    image_path: str
    created_at: str
    updated_at: str


class PlantSummary(CamelModel):
    """Краткая информация о растении для списка"""
    id: str
    name: str
    characteristics: str
    image_path: str
    confidence: float
    created_at: str


class PlantList(CamelModel):
    plants: List[PlantSummary]
    total: int


class DuplicatePlant(CamelModel):
    id: str
    name: str
    image_path: str
    confidence: float
    created_at: str


class DuplicateCheckResult(CamelModel):
    exists: bool
    plant: Optional[DuplicatePlant] = None


class MessageResponse(BaseModel):
    message: str


class HealthResponse(CamelModel):
    status: str
    database_connected: bool


# ИДЕНТИФИКАЦИЯ

class IdentifyRequest(CamelModel):
    """Запрос идентификации уже сохранённого изображения"""
    image_path: StrictStr
    context_info: Optional[StrictStr] = None


class SpeciesCandidate(CamelModel):
    """Кандидат вида растения"""
    name: StrictStr = Field(..., min_length=1)
    scientific_name: Optional[StrictStr] = None
    family_name: Optional[StrictStr] = None
    description: Optional[StrictStr] = None
    characteristics: StrictStr = Field(..., min_length=1)
    confidence: StrictFloat


class ClassificationResult(CamelModel):
    """Результат классификации: растение или нет и до трёх кандидатов"""
    is_plant: bool
    confidence: float
    reason: str
    candidates: List[SpeciesCandidate] = Field(default_factory=list)


class PlantAnalysis(CamelModel):
    candidates: List[SpeciesCandidate]


class ModelVerdict(CamelModel):
    """Строгая схема JSON-ответа модели"""
    is_plant: StrictBool
    confidence: StrictFloat = Field(..., ge=0, le=100)
    reason: StrictStr
    plant_analysis: Optional[PlantAnalysis] = None


class IdentifyResponse(CamelModel):
    result: ClassificationResult


class UploadResult(CamelModel):
    """Результат загрузки изображения и идентификации"""
    image_path: str
    file_name: str
    content_type: str
    file_size: int
    identification_result: ClassificationResult
