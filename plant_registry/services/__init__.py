from .storage_service import StorageService, StoredObject, CleanupOutcome, AREA_TEMPORARY, AREA_PERMANENT
from .vision_service import VisionService
from .upload_service import UploadService

__all__ = ['StorageService', 'StoredObject', 'CleanupOutcome', 'AREA_TEMPORARY', 'AREA_PERMANENT',
           'VisionService', 'UploadService']
