"""
Local predictions for decision tree models.

    model = LocalModel("model/5143a51a37203f2cf7000972")
    model.predict({"petal length": 3, "petal width": 1})

The model JSON can also be given directly, or as the path of a file that
contains it. Boosted models (members of a boosted ensemble) return their
raw boosting output.
"""

import copy
import logging
from typing import Any, Mapping

from ..core.constants import DEFAULT_BOOSTING_LAMBDA
from ..core.errors import LoadError, UnsupportedOperationError, ValidationError
from ..core.models import Prediction, PredictOptions
from ..core.utils import NUMERIC, dec_round, ws_confidence
from ..tree import BoostedTree, Tree
from .base import LocalResource

logger = logging.getLogger(__name__)


def _merge_model_fields(model: Mapping[str, Any]) -> dict[str, dict]:
    """Fields of the model, with names and summaries taken from ``fields``."""
    fields = model.get("fields", {})
    if "model_fields" not in model:
        return copy.deepcopy(fields)
    model_fields = copy.deepcopy(model["model_fields"])
    for field_id, field in model_fields.items():
        if field_id not in fields:
            raise LoadError(
                f"Some fields are missing to generate a local model: {field_id}. "
                "Please provide a model with the complete list of fields."
            )
        for attribute in ("name", "summary"):
            if attribute in fields[field_id]:
                field[attribute] = fields[field_id][attribute]
    return model_fields


class LocalModel(LocalResource):
    """A decision tree model that predicts locally."""

    resource_type = "model"
    operating_kinds = ("probability", "confidence")
    boosting: dict[str, Any] | None = None
    missing_numerics: bool | None = None
    weighted = False

    def _fill(self, data: Any) -> None:
        if not isinstance(data, Mapping):
            raise LoadError(f"Cannot build a local model from {type(data).__name__}")
        self._check_resource_type(data)
        resource = data.get("object", data)
        model = resource.get("model")
        if not isinstance(model, Mapping) or "root" not in model:
            raise LoadError(
                "Cannot create the local model: the resource has no model information"
            )

        fields = _merge_model_fields(model)
        objective_fields = resource.get("objective_fields") or model.get("objective_fields")
        objective_id = objective_fields[0] if objective_fields else model.get("objective_field")
        if objective_id not in fields:
            raise LoadError(f"Objective field {objective_id} not found in the model fields")
        self._set_fields(fields, objective_id)

        self.missing_numerics = model.get("missing_numerics")
        self.boosting = model.get("boosting") or None
        root = model["root"]
        self.weighted = "weighted_objective_summary" in root
        if self.boosting:
            self.tree = BoostedTree(
                root,
                self.fields,
                objective_id,
                lambda_=self.boosting.get("lambda", DEFAULT_BOOSTING_LAMBDA),
            )
            self.operating_kinds = ()
        else:
            self.tree = Tree(root, self.fields, objective_id, weighted=self.weighted)

        training = model.get("distribution", {}).get("training", {})
        if self.boosting or self.regression:
            self.root_distribution = {}
        elif training.get("categories") and not self.weighted:
            self.root_distribution = {category: count for category, count in training["categories"]}
        else:
            self.root_distribution = self.tree.distribution_dict()

        logger.debug(
            f"Parsed model {self.resource_id}: {len(self.fields)} fields, "
            f"{'boosted' if self.boosting else 'regression' if self.regression else 'classification'}"
        )
        return None

    # ------------------------------------------------------------------
    # Raw traversal, shared with ensembles
    # ------------------------------------------------------------------

    def _check_missing_numerics(self, data: Mapping[str, Any]) -> None:
        if self.missing_numerics is not False:
            return
        for field_id, field in self.fields.items():
            if field_id != self.objective_id and field.get("optype") == NUMERIC and field_id not in data:
                raise ValidationError(
                    "Failed to predict. Input data must contain values for all "
                    "numeric fields to get a prediction."
                )

    def raw_predict(self, input_data: Mapping[str, Any], options: PredictOptions) -> dict[str, Any]:
        """
        Traverse the tree and return the node prediction as a dict.

        The dict carries ``prediction``, ``count``, ``path`` and
        ``unused_fields``; classifications add ``confidence``,
        ``distribution``, ``probability``, ``probabilities`` and
        ``confidences``; boosted models add ``weight`` and
        ``objective_class``.
        """
        data, keys, unknown = self.filter_input(input_data)
        self._check_missing_numerics(data)

        if self.boosting:
            result = self.tree.predict(data, options.missing_strategy)
            result["weight"] = self.boosting.get("weight", 1)
            if "objective_class" in self.boosting:
                result["objective_class"] = self.boosting["objective_class"]
        else:
            result = self.tree.predict(data, options.missing_strategy, use_median=options.use_median)
            result.pop("node", None)
            if not self.regression:
                distribution = {category: count for category, count in result["distribution"]}
                result["probabilities"] = self.probabilities(distribution)
                result["confidences"] = self.confidences(distribution)
                result["probability"] = next(
                    (p["probability"] for p in result["probabilities"] if p["category"] == result["prediction"]),
                    0.0,
                )
        result["unused_fields"] = self.unused_fields(keys, unknown, result.pop("used_fields"))
        return result

    def probabilities(self, distribution: Mapping[str, float]) -> list[dict[str, Any]]:
        """
        Per-class probabilities for a leaf distribution.

        Non-weighted trees apply a Laplace correction with the root
        distribution as prior; weighted trees use the leaf counts only.
        """
        if self.weighted:
            total = 0.0
            probabilities = {category: 0.0 for category in self.class_names}
        else:
            total = 1.0
            root_total = sum(self.root_distribution.values())
            probabilities = {
                category: (self.root_distribution.get(category, 0) / root_total if root_total else 0.0)
                for category in self.class_names
            }
        for category, instances in distribution.items():
            if category in probabilities:
                probabilities[category] += instances
                total += instances
        return [
            {
                "category": category,
                "probability": dec_round(probabilities[category] / total) if total else 0.0,
            }
            for category in self.class_names
        ]

    def confidences(self, distribution: Mapping[str, float]) -> list[dict[str, Any]]:
        """Wilson score confidence of every class for a leaf distribution."""
        return [
            {"category": category, "confidence": ws_confidence(category, distribution)}
            for category in self.class_names
        ]

    # ------------------------------------------------------------------
    # LocalResource hooks
    # ------------------------------------------------------------------

    def _predict(self, input_data: Mapping[str, Any], options: PredictOptions) -> Prediction:
        result = self.raw_predict(input_data, options)
        unused = result["unused_fields"] if options.add_unused_fields else None
        if self.boosting:
            return Prediction(
                prediction=result["prediction"],
                count=result["count"],
                path=result["path"],
                unused_fields=unused,
            )
        if self.regression:
            return Prediction(
                prediction=result["prediction"],
                confidence=result["confidence"],
                distribution=result["distribution"],
                count=result["count"],
                path=result["path"],
                median=result["median"],
                min=result["min"],
                max=result["max"],
                unused_fields=unused,
            )
        return Prediction(
            prediction=result["prediction"],
            confidence=result["confidence"],
            probability=result["probability"],
            distribution=result["distribution"],
            count=result["count"],
            path=result["path"],
            unused_fields=unused,
        )

    def _distribution_for(self, kind: str, input_data: Mapping[str, Any], options: PredictOptions) -> list[dict[str, Any]]:
        if self.boosting:
            raise UnsupportedOperationError(
                f"Boosted models cannot predict a {kind}: use the boosted ensemble instead"
            )
        if self.regression:
            raise UnsupportedOperationError(f"Per-class {kind} is only available for classifications")
        self._check_kind(kind)
        result = self.raw_predict(input_data, options)
        return result["probabilities"] if kind == "probability" else result["confidences"]
