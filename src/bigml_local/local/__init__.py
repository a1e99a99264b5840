"""
Local predictors built from finished resources.

- LocalModel: decision trees (and boosted trees)
- LocalEnsemble: bagging, random decision forests and boosted ensembles
- LocalLogisticRegression: logistic regressions
- LocalSupervised: any of the above, chosen by resource type
"""

from .base import LocalResource
from .ensemble import LocalEnsemble
from .logistic import LocalLogisticRegression
from .model import LocalModel
from .supervised import LocalSupervised

__all__ = [
    "LocalEnsemble",
    "LocalLogisticRegression",
    "LocalModel",
    "LocalResource",
    "LocalSupervised",
]
