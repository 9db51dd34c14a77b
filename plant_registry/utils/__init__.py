"""
Utility functions and classes
"""

from .exceptions import (ErrorCode, ErrorKind, ApiError, InvalidRequestError, NotAPlantError,
                         PlantNotFoundError, UnauthorizedError, InternalError, ServiceError,
                         StorageError, ClassifierError, DatabaseError)

__all__ = ['ErrorCode', 'ErrorKind', 'ApiError', 'InvalidRequestError', 'NotAPlantError',
           'PlantNotFoundError', 'UnauthorizedError', 'InternalError', 'ServiceError',
           'StorageError', 'ClassifierError', 'DatabaseError']
