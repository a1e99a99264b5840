"""
Core types, errors and helpers for bigml_local.

This package provides:
- Status codes and enums (constants)
- The error taxonomy (errors)
- Resource id parsing (resource_ids)
- The HTTP collaborator used to fetch finished resources (http)
- Prediction value types (models)
"""

from .constants import (
    FAULTY,
    FINISHED,
    CombinationMethod,
    MissingStrategy,
    OperatingKind,
)
from .errors import (
    ApiError,
    BigMLLocalError,
    ConfigurationError,
    LoadError,
    NotReadyError,
    RateLimitError,
    ResourceIdError,
    UnsupportedOperationError,
    ValidationError,
)
from .models import OperatingPoint, Prediction, PredictOptions
from .resource_ids import ResourceId, get_resource_id, get_status, is_finished

__all__ = [
    # Constants
    "FAULTY",
    "FINISHED",
    "CombinationMethod",
    "MissingStrategy",
    "OperatingKind",
    # Errors
    "ApiError",
    "BigMLLocalError",
    "ConfigurationError",
    "LoadError",
    "NotReadyError",
    "RateLimitError",
    "ResourceIdError",
    "UnsupportedOperationError",
    "ValidationError",
    # Models
    "OperatingPoint",
    "Prediction",
    "PredictOptions",
    # Resource ids
    "ResourceId",
    "get_resource_id",
    "get_status",
    "is_finished",
]
