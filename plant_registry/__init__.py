"""
Plant Registry: plant photo identification and plant collection backend
"""

__version__ = '1.0.0'

from .config import Settings, load_settings
from .services import StorageService, VisionService, UploadService
from .utils import ApiError, ServiceError, StorageError, ClassifierError, DatabaseError

__all__ = [
    'Settings',
    'load_settings',
    'StorageService',
    'VisionService',
    'UploadService',
    'ApiError',
    'ServiceError',
    'StorageError',
    'ClassifierError',
    'DatabaseError'
]
