"""
BigML Local Predictions

Client-side scoring for BigML models, ensembles and logistic regressions.
Once the JSON of a finished resource is available (inline, from a file, a
storage directory, a cache or the remote API) predictions need no network
round trip.

Key Features:
- Decision tree traversal with last-prediction and proportional missing strategies
- Ensemble combination (plurality, confidence, probability, threshold, boosting)
- Logistic regression scoring with text, items and categorical expansion
- Operating points and operating kinds
- Non-blocking loading: predictions queue until the resource is ready

Usage:
    from bigml_local import LocalModel, LocalEnsemble

    # Synchronous: the JSON is at hand
    model = LocalModel(model_json)
    prediction = model.predict({"petal length": 3, "petal width": 1})

    # Asynchronous: load inside a running event loop
    async def main():
        ensemble = LocalEnsemble("ensemble/5143a51a37203f2cf7000979")
        prediction = await ensemble.predict({"petal length": 3})
"""

from .config import Settings, configure_logging, get_settings
from .core import (
    ApiError,
    BigMLLocalError,
    CombinationMethod,
    ConfigurationError,
    LoadError,
    MissingStrategy,
    NotReadyError,
    OperatingKind,
    OperatingPoint,
    Prediction,
    PredictOptions,
    ResourceIdError,
    UnsupportedOperationError,
    ValidationError,
    get_resource_id,
)
from .loader import CacheProtocol, MemoryCache, ResourceLoader
from .local import (
    LocalEnsemble,
    LocalLogisticRegression,
    LocalModel,
    LocalSupervised,
)
from .multivote import MultiVote, MultiVoteList

__all__ = [
    # Configuration
    "Settings",
    "configure_logging",
    "get_settings",
    # Local predictors
    "LocalEnsemble",
    "LocalLogisticRegression",
    "LocalModel",
    "LocalSupervised",
    # Combination
    "MultiVote",
    "MultiVoteList",
    # Loading
    "CacheProtocol",
    "MemoryCache",
    "ResourceLoader",
    # Options and results
    "CombinationMethod",
    "MissingStrategy",
    "OperatingKind",
    "OperatingPoint",
    "Prediction",
    "PredictOptions",
    "get_resource_id",
    # Errors
    "ApiError",
    "BigMLLocalError",
    "ConfigurationError",
    "LoadError",
    "NotReadyError",
    "ResourceIdError",
    "UnsupportedOperationError",
    "ValidationError",
]
