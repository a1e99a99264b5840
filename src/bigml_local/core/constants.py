"""
Core constants for BigML local predictions.

This module provides:
- Resource status codes
- MissingStrategy, CombinationMethod and OperatingKind enums
- Text analysis token modes
- RESOURCE_TYPES, the closed set of resource type tags in resource ids
"""

from enum import Enum, IntEnum


# =============================================================================
# Resource status codes
# =============================================================================

WAITING = 0
QUEUED = 1
STARTED = 2
IN_PROGRESS = 3
SUMMARIZED = 4
FINISHED = 5
UPLOADING = 6
FAULTY = -1
UNKNOWN = -2
RUNNABLE = -3


class MissingStrategy(IntEnum):
    """Strategies to follow when a split field is missing in the input."""

    LAST_PREDICTION = 0
    PROPORTIONAL = 1


class CombinationMethod(IntEnum):
    """Ensemble combination methods."""

    PLURALITY = 0
    CONFIDENCE = 1
    PROBABILITY = 2
    THRESHOLD = 3


class OperatingKind(str, Enum):
    """Measures an operating point can be based on."""

    probability = "probability"
    confidence = "confidence"
    votes = "votes"


# =============================================================================
# Text analysis
# =============================================================================

TM_TOKENS = "tokens_only"
TM_FULL_TERM = "full_terms_only"
TM_ALL = "all"

# =============================================================================
# Numeric defaults
# =============================================================================

PRECISION = 5
DEFAULT_WS_Z = 1.96
DEFAULT_BOOSTING_LAMBDA = 1.0
BINS_LIMIT = 32

# Query used when downloading a model-like resource to be used locally
ONLY_MODEL = "only_model=true;limit=-1"

# =============================================================================
# Resource types accepted in resource ids
# =============================================================================

RESOURCE_TYPES: tuple[str, ...] = (
    "source",
    "dataset",
    "model",
    "prediction",
    "evaluation",
    "ensemble",
    "batchprediction",
    "cluster",
    "centroid",
    "batchcentroid",
    "anomaly",
    "anomalyscore",
    "batchanomalyscore",
    "project",
    "sample",
    "correlation",
    "statisticaltest",
    "logisticregression",
    "association",
    "associationset",
    "script",
    "execution",
    "library",
    "topicmodel",
    "topicdistribution",
    "batchtopicdistribution",
    "timeseries",
    "forecast",
    "deepnet",
    "optiml",
    "fusion",
    "pca",
    "projection",
    "batchprojection",
    "linearregression",
    "configuration",
    "externalconnector",
)
