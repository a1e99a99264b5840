"""
Combination of the predictions of several models.

MultiVote merges single predictions (one per model) into one prediction
with one of the CombinationMethod rules, or with the boosting rule when
the predictions come from boosted trees. MultiVoteList merges whole
per-class distributions (probabilities, confidences or votes).
"""

import logging
import math
from typing import Any, Mapping, Optional, Sequence

from .core.constants import PRECISION, CombinationMethod
from .core.errors import ConfigurationError, UnsupportedOperationError
from .core.utils import dec_round, softmax, ws_confidence

logger = logging.getLogger(__name__)

COMBINATION_WEIGHTS: dict[CombinationMethod, Optional[str]] = {
    CombinationMethod.PLURALITY: None,
    CombinationMethod.CONFIDENCE: "confidence",
    CombinationMethod.PROBABILITY: "probability",
    CombinationMethod.THRESHOLD: None,
}

# Error weighting spreads normalized errors over this many e-folds
ERROR_TOP_RANGE = 10


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class MultiVote:
    """
    A list of model predictions to be combined.

    Each prediction is a dict with at least ``prediction``. Depending on the
    combination method it also needs ``confidence``, ``distribution`` and
    ``count``; boosted predictions carry ``weight`` and, for
    classifications, ``objective_class``.

    Args:
        predictions: One prediction dict per model
        class_names: Sorted categories of the objective field, used to
            break ties and to order the boosting distribution
        boosting_offsets: Initial offset (regression) or per-class offsets
            (classification) of a boosted ensemble. Its presence switches
            to the boosting combination.
    """

    def __init__(
        self,
        predictions: Sequence[Mapping[str, Any]],
        class_names: Optional[Sequence[str]] = None,
        boosting_offsets: float | Mapping[str, float] | Sequence | None = None,
        boosting: bool = False,
    ):
        self.predictions = []
        for order, prediction in enumerate(predictions):
            prediction = dict(prediction)
            prediction.setdefault("order", order)
            self.predictions.append(prediction)
        self.class_names = list(class_names or [])
        self.boosting = boosting or boosting_offsets is not None
        self.boosting_offsets = boosting_offsets

    def __len__(self) -> int:
        return len(self.predictions)

    def append(self, prediction: Mapping[str, Any]) -> None:
        prediction = dict(prediction)
        prediction.setdefault("order", len(self.predictions))
        self.predictions.append(prediction)

    def is_regression(self) -> bool:
        if self.boosting:
            return all("objective_class" not in p for p in self.predictions)
        return all(_is_number(p.get("prediction")) for p in self.predictions)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def combine(
        self,
        method: CombinationMethod = CombinationMethod.PLURALITY,
        options: Optional[Mapping[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Reduce the predictions to one.

        Args:
            method: Combination method, ignored for boosted predictions
            options: ``threshold`` and ``category`` for the THRESHOLD method

        Returns:
            Dict with ``prediction`` and, when available, ``confidence`` and
            ``probability``

        Raises:
            ConfigurationError: If THRESHOLD options are missing or invalid
            UnsupportedOperationError: If the predictions lack the data the
                method needs
        """
        if not self.predictions:
            raise UnsupportedOperationError("There are no predictions to combine")
        method = CombinationMethod(method)
        logger.debug(f"Combining {len(self.predictions)} predictions ({method.name})")

        if self.boosting:
            return self.boosting_combine()

        if self.is_regression():
            if method == CombinationMethod.CONFIDENCE:
                return self.error_weighted()
            return self.avg()

        if method == CombinationMethod.THRESHOLD:
            votes = self.single_out_category(options or {})
        elif method == CombinationMethod.PROBABILITY:
            votes = MultiVote(self.probability_weight(), class_names=self.class_names)
        else:
            votes = self
        return votes.combine_categorical(COMBINATION_WEIGHTS[method])

    # ------------------------------------------------------------------
    # Regressions
    # ------------------------------------------------------------------

    def avg(self) -> dict[str, Any]:
        """Plain average of the predictions and of their confidences."""
        total = len(self.predictions)
        result = sum(p["prediction"] for p in self.predictions) / total
        output: dict[str, Any] = {"prediction": result}
        confidences = [p["confidence"] for p in self.predictions if p.get("confidence") is not None]
        if len(confidences) == total:
            output["confidence"] = dec_round(sum(confidences) / total)
        return output

    def error_weighted(self) -> dict[str, Any]:
        """Average weighted by the exponential of the normalized errors."""
        if any(p.get("confidence") is None for p in self.predictions):
            raise UnsupportedOperationError(
                "Not enough data to use the selected prediction method. Lacks confidence information."
            )
        weights, normalization_factor = self.normalize_error(ERROR_TOP_RANGE)
        result = 0.0
        combined_error = 0.0
        for prediction, weight in zip(self.predictions, weights):
            result += prediction["prediction"] * weight
            combined_error += prediction["confidence"] * weight
        return {
            "prediction": result / normalization_factor,
            "confidence": dec_round(combined_error / normalization_factor),
        }

    def normalize_error(self, top_range: float) -> tuple[list[float], float]:
        """
        Per-prediction weights decreasing with their error.

        Returns:
            (weights, sum of weights)
        """
        errors = [p["confidence"] for p in self.predictions]
        max_error = max(errors)
        min_error = min(errors)
        error_range = float(max_error - min_error)
        if error_range > 0:
            weights = [math.exp((min_error - error) / error_range * top_range) for error in errors]
        else:
            weights = [1.0] * len(errors)
        return weights, sum(weights)

    # ------------------------------------------------------------------
    # Classifications
    # ------------------------------------------------------------------

    def single_out_category(self, options: Mapping[str, Any]) -> "MultiVote":
        """
        Keep the votes for ``category`` if it has at least ``threshold`` of
        them, and the rest of the votes otherwise.
        """
        threshold = options.get("threshold")
        category = options.get("category")
        if threshold is None or category is None:
            raise ConfigurationError(
                "No category and threshold information was found. Add threshold and "
                'category info. E.g. {"threshold": 6, "category": "Iris-virginica"}.'
            )
        length = len(self.predictions)
        if threshold > length:
            raise ConfigurationError(
                f"You cannot set a threshold value larger than {length}. The ensemble "
                "has not enough models to use this threshold value."
            )
        if threshold < 1:
            raise ConfigurationError("The threshold must be a positive value")

        category_predictions = [p for p in self.predictions if p["prediction"] == category]
        rest_of_predictions = [p for p in self.predictions if p["prediction"] != category]
        chosen = category_predictions if len(category_predictions) >= threshold else rest_of_predictions
        return MultiVote(chosen, class_names=self.class_names)

    def probability_weight(self) -> list[dict[str, Any]]:
        """Expand every prediction into one vote per class of its distribution."""
        predictions = []
        for prediction in self.predictions:
            if "distribution" not in prediction or "count" not in prediction:
                raise UnsupportedOperationError(
                    "Probability weighting is not available because distribution "
                    "information is missing."
                )
            total = prediction["count"]
            if not _is_number(total) or total < 1 or float(total) != int(total):
                raise UnsupportedOperationError(
                    "Probability weighting is not available because distribution seems "
                    f"to have {total} as number of instances in the node"
                )
            for category, instances in prediction["distribution"]:
                predictions.append({
                    "prediction": category,
                    "probability": float(instances) / total,
                    "count": instances,
                    "order": prediction["order"],
                })
        return predictions

    def _category_order(self, category: Any, first_seen: int) -> int:
        if category in self.class_names:
            return self.class_names.index(category)
        return len(self.class_names) + first_seen

    def combine_categorical(self, weight_label: Optional[str] = None) -> dict[str, Any]:
        """
        Weighted plurality vote.

        Ties go to the category with the higher combined confidence, then to
        the first one in class order.
        """
        mode: dict[Any, dict[str, float]] = {}
        for prediction in self.predictions:
            if weight_label is None:
                weight = 1
            else:
                if prediction.get(weight_label) is None:
                    raise UnsupportedOperationError(
                        "Not enough data to use the selected prediction method. "
                        f"Lacks {weight_label} information."
                    )
                weight = prediction[weight_label]
            category = prediction["prediction"]
            if category in mode:
                mode[category]["count"] += weight
            else:
                mode[category] = {"count": weight, "order": prediction["order"]}

        top_count = max(entry["count"] for entry in mode.values())
        candidates = [category for category, entry in mode.items() if entry["count"] == top_count]
        confidences = {category: self.combined_confidence(category, weight_label) for category in candidates}
        prediction = sorted(
            candidates,
            key=lambda c: (
                -_nan_safe(confidences[c]),
                self._category_order(c, int(mode[c]["order"])),
            ),
        )[0]

        total_weight = sum(entry["count"] for entry in mode.values())
        output: dict[str, Any] = {"prediction": prediction}
        if confidences[prediction] is not None:
            output["confidence"] = dec_round(confidences[prediction])
        if total_weight > 0:
            output["probability"] = dec_round(mode[prediction]["count"] / total_weight)
        return output

    def combined_confidence(self, category: Any, weight_label: Optional[str] = None) -> Optional[float]:
        """
        Confidence of a combined category: the weighted mean of the votes'
        confidences, or the Wilson score of the merged distribution when the
        votes carry no confidence.
        """
        predictions = [p for p in self.predictions if p["prediction"] == category]
        if all(p.get("confidence") is not None for p in self.predictions):
            return self.weighted_confidence(category, weight_label)
        distribution, count = self.combine_distribution()
        if not distribution:
            return None
        if not predictions:
            return 0.0
        return ws_confidence(category, distribution, ws_n=count if count >= 1 else None)

    def weighted_confidence(self, category: Any, weight_label: Optional[str] = None) -> float:
        predictions = [p for p in self.predictions if p["prediction"] == category]
        final_confidence = 0.0
        total_weight = 0.0
        for prediction in predictions:
            weight = 1 if weight_label is None else prediction[weight_label]
            final_confidence += weight * prediction["confidence"]
            total_weight += weight
        if total_weight > 0:
            return final_confidence / total_weight
        return float("nan")

    def combine_distribution(self, weight_label: str = "probability") -> tuple[dict[Any, float], float]:
        """
        Merge the votes into one distribution.

        Returns:
            (category -> accumulated weight, total instances)
        """
        distribution: dict[Any, float] = {}
        total = 0.0
        for prediction in self.predictions:
            weight = prediction.get(weight_label, 1)
            category = prediction["prediction"]
            distribution[category] = distribution.get(category, 0) + weight
            total += prediction.get("count", 1)
        if total <= 0:
            return {}, 0
        return distribution, total

    # ------------------------------------------------------------------
    # Boosting
    # ------------------------------------------------------------------

    def _offsets(self) -> dict[str, float]:
        offsets = self.boosting_offsets
        if offsets is None:
            return {}
        if isinstance(offsets, Mapping):
            return dict(offsets)
        return {category: offset for category, offset in offsets}

    def boosting_combine(self) -> dict[str, Any]:
        """
        Weighted sum of the raw outputs plus the initial offset. For
        classifications one sum is kept per class and the softmax of the
        sums gives the class probabilities.
        """
        if self.is_regression():
            offset = self.boosting_offsets if _is_number(self.boosting_offsets) else 0
            prediction = sum(p.get("weight", 1) * p["prediction"] for p in self.predictions)
            return {"prediction": prediction + offset}

        offsets = self._offsets()
        categories = list(self.class_names)
        for category in list(offsets) + [p["objective_class"] for p in self.predictions]:
            if category not in categories:
                categories.append(category)
        scores = {category: offsets.get(category, 0.0) for category in categories}
        for prediction in self.predictions:
            scores[prediction["objective_class"]] += prediction.get("weight", 1) * prediction["prediction"]

        probabilities = softmax(scores)
        distribution = [
            {"category": category, "probability": round(probabilities[category], PRECISION)}
            for category in categories
        ]
        # stable: ties keep class order
        best = sorted(distribution, key=lambda d: -probabilities[d["category"]])[0]
        return {
            "prediction": best["category"],
            "probability": best["probability"],
            "distribution": distribution,
        }


def _nan_safe(value: Optional[float]) -> float:
    if value is None or math.isnan(value):
        return float("-inf")
    return value


class MultiVoteList:
    """Per-class distributions from several models, to be merged."""

    def __init__(self, predictions: Optional[Sequence[Sequence[Mapping[str, Any]]]] = None):
        self.predictions: list[list[Mapping[str, Any]]] = [list(p) for p in predictions or []]

    def __len__(self) -> int:
        return len(self.predictions)

    def append(self, distribution: Sequence[Mapping[str, Any]]) -> None:
        self.predictions.append(list(distribution))

    def extend(self, other: "MultiVoteList") -> None:
        self.predictions.extend(other.predictions)

    def combine_to_distribution(self, kind: str = "probability") -> list[dict[str, Any]]:
        """
        Sum each class's ``kind`` value over all the models and normalize by
        the grand total.

        Returns:
            ``[{"category": ..., kind: ...}]`` in the order of the first
            distribution
        """
        if not self.predictions:
            return []
        categories: list[Any] = []
        totals: dict[Any, float] = {}
        for distribution in self.predictions:
            for entry in distribution:
                category = entry["category"]
                if category not in totals:
                    categories.append(category)
                    totals[category] = 0.0
                totals[category] += entry.get(kind, 0.0)
        grand_total = sum(totals.values())
        return [
            {
                "category": category,
                kind: dec_round(totals[category] / grand_total) if grand_total > 0 else 0.0,
            }
            for category in categories
        ]
