"""
Config for plant registry
"""

from .settings import (Settings, ValidationLimits, FieldLimits, DatabaseConfig,
                       StorageConfig, ClassifierConfig, load_settings, build_logging_config)

__all__ = ['Settings', 'ValidationLimits', 'FieldLimits', 'DatabaseConfig', 'StorageConfig',
           'ClassifierConfig', 'load_settings', 'build_logging_config']
