"""
Decision tree traversal for local models.

A Tree is built recursively from the ``root`` node of a model resource.
Predictions follow one of two missing strategies:

- LAST_PREDICTION: descend while some child predicate holds, then answer
  with the node where the descent stopped.
- PROPORTIONAL: when the split field is missing, visit every child and
  merge the distributions of all the reached leaves.
"""

import math
from statistics import NormalDist
from typing import Any, Mapping, Optional

from ..core.constants import BINS_LIMIT, DEFAULT_WS_Z, PRECISION, MissingStrategy
from ..core.utils import ITEMS, NUMERIC, TEXT, merge_distributions, ws_confidence
from .predicate import Predicate, predicate_from_node


# =============================================================================
# Distribution statistics
# =============================================================================

def mean(distribution: list[list[float]]) -> float:
    """Weighted mean of a [[value, count], ...] distribution."""
    addition = 0.0
    count = 0.0
    for point, instances in distribution:
        addition += point * instances
        count += instances
    if count > 0:
        return addition / count
    return float("nan")


def dist_median(distribution: list[list[float]], count: float) -> Optional[float]:
    """Median of a sorted [[value, count], ...] distribution."""
    counter = 0
    previous_value = None
    for value, instances in distribution:
        counter += instances
        if counter > count / 2.0:
            if (
                not count % 2
                and (counter - 1) == (count / 2)
                and previous_value is not None
            ):
                return (value + previous_value) / 2.0
            return value
        previous_value = value
    return None


def unbiased_sample_variance(distribution: list[list[float]], distribution_mean: Optional[float] = None) -> float:
    addition = 0.0
    count = 0.0
    if distribution_mean is None or not distribution:
        return float("nan")
    for point, instances in distribution:
        addition += ((point - distribution_mean) ** 2) * instances
        count += instances
    if count > 1:
        return addition / (count - 1)
    return float("nan")


def chi2_ppf(probability: float, degrees: float) -> float:
    """
    Chi-squared quantile, Wilson-Hilferty approximation.

    Accurate to a few parts per thousand for the population sizes found in
    tree nodes.
    """
    z = NormalDist().inv_cdf(probability)
    factor = 2.0 / (9.0 * degrees)
    base = 1.0 - factor + z * math.sqrt(factor)
    return degrees * max(base, 0.0) ** 3


def regression_error(distribution_variance: float, population: float, r_z: float = DEFAULT_WS_Z) -> float:
    """Error of a regression prediction given the variance of its distribution."""
    if population > 0:
        ppf = chi2_ppf(1 - math.erf(r_z / math.sqrt(2)), population)
        if ppf != 0:
            error = distribution_variance * (population - 1) / ppf
            error = error * ((math.sqrt(population) + r_z) ** 2)
            return math.sqrt(error / population)
    return float("nan")


def merge_bins(distribution: list[list[float]], limit: int) -> list[list[float]]:
    """Merge the two closest bins until at most ``limit`` remain."""
    length = len(distribution)
    if limit < 1 or length <= limit or length < 2:
        return distribution
    index_to_merge = 2
    shortest = float("inf")
    for index in range(1, length):
        distance = distribution[index][0] - distribution[index - 1][0]
        if distance < shortest:
            shortest = distance
            index_to_merge = index
    new_distribution = distribution[: index_to_merge - 1]
    left = distribution[index_to_merge - 1]
    right = distribution[index_to_merge]
    new_bin = [
        (left[0] * left[1] + right[0] * right[1]) / (left[1] + right[1]),
        left[1] + right[1],
    ]
    new_distribution.append(new_bin)
    if index_to_merge < (length - 1):
        new_distribution.extend(distribution[(index_to_merge + 1):])
    return merge_bins(new_distribution, limit)


# =============================================================================
# Branch helpers
# =============================================================================

def split(children: list) -> Optional[str]:
    """Field used to split the children of a node."""
    for child in children:
        if child.predicate is not True:
            return child.predicate.field
    return None


def missing_branch(children: list) -> bool:
    return any(child.predicate is not True and child.predicate.missing for child in children)


def none_value(children: list) -> bool:
    return any(child.predicate is not True and child.predicate.value is None for child in children)


def one_branch(children: list, input_data: Mapping[str, Any]) -> bool:
    """Whether exactly one branch can be followed for this input."""
    return split(children) in input_data or missing_branch(children) or none_value(children)


def extract_distribution(summary: Mapping[str, Any]) -> tuple[Optional[str], list]:
    """Distribution unit and [[value, count], ...] pairs of an objective summary."""
    for unit in ("bins", "counts", "categories"):
        if unit in summary:
            return unit, summary[unit]
    return None, []


class Tree:
    """
    A node of a decision tree and its subtree.

    Args:
        tree: Node dict (``output``, ``predicate``, ``children``, ``count``,
            ``confidence`` and the objective summaries)
        fields: Model fields dict keyed by field id
        objective_field: Objective field id
        weighted: Use the weighted objective summaries
    """

    def __init__(
        self,
        tree: Mapping[str, Any],
        fields: Mapping[str, dict],
        objective_field: Optional[str] = None,
        weighted: bool = False,
    ):
        self.fields = fields
        self.objective_id = objective_field
        self.weighted = weighted
        self.id = tree.get("id")
        self.output = tree.get("output")
        self.predicate: Predicate | bool = predicate_from_node(tree)
        self.count = tree.get("count", 0)
        self.confidence = tree.get("confidence")
        self.regression = self._is_regression()
        self.children = [
            Tree(child, fields, objective_field, weighted) for child in tree.get("children", [])
        ]

        summary_key = "weighted_objective_summary" if weighted else "objective_summary"
        summary = tree.get(summary_key) or tree.get("objective_summary")
        if summary:
            self.distribution_unit, distribution = extract_distribution(summary)
        else:
            self.distribution_unit, distribution = "categories", tree.get("distribution", [])
        self.distribution = [list(pair) for pair in distribution]
        if self.weighted and "weight" in tree:
            self.count = tree["weight"]

        self.median = None
        self.min = None
        self.max = None
        if self.regression:
            summary = summary or {}
            self.median = summary.get("median")
            if self.median is None and self.distribution:
                self.median = dist_median(self.distribution, self.count)
            values = [value for value, _ in self.distribution]
            self.min = summary.get("minimum", min(values) if values else None)
            self.max = summary.get("maximum", max(values) if values else None)

    def _is_regression(self) -> bool:
        if self.objective_id is not None and self.objective_id in self.fields:
            return self.fields[self.objective_id].get("optype") == NUMERIC
        return isinstance(self.output, (int, float)) and not isinstance(self.output, bool)

    def __repr__(self) -> str:
        return f"Tree(id={self.id!r}, output={self.output!r}, children={len(self.children)})"

    def distribution_dict(self) -> dict[Any, float]:
        return {value: count for value, count in self.distribution}

    # ------------------------------------------------------------------
    # Predictions
    # ------------------------------------------------------------------

    def predict(
        self,
        input_data: Mapping[str, Any],
        missing_strategy: MissingStrategy = MissingStrategy.LAST_PREDICTION,
        use_median: bool = False,
    ) -> dict[str, Any]:
        """
        Predict from casted input data keyed by field id.

        Returns:
            Dict with ``prediction``, ``confidence``, ``distribution``,
            ``count``, ``path``, ``median``, ``min``, ``max``, ``node`` and
            the set of input fields the traversal consulted (``used_fields``)
        """
        used_fields: set[str] = set()
        if missing_strategy == MissingStrategy.PROPORTIONAL:
            result = self._predict_proportional_result(input_data, used_fields)
        else:
            result = self._predict_last(input_data, used_fields)
        if self.regression and use_median and result.get("median") is not None:
            result["prediction"] = result["median"]
        result["used_fields"] = used_fields
        return result

    def _predict_last(self, input_data: Mapping[str, Any], used_fields: set[str]) -> dict[str, Any]:
        node = self
        path: list[str] = []
        while node.children:
            field = split(node.children)
            if field in input_data:
                used_fields.add(field)
            for child in node.children:
                if child.predicate.apply(input_data, self.fields):
                    path.append(child.predicate.to_rule(self.fields))
                    node = child
                    break
            else:
                break
        return node._node_result(path)

    def _node_result(self, path: list[str]) -> dict[str, Any]:
        confidence = self.confidence
        if confidence is None and not self.regression and self.distribution:
            confidence = ws_confidence(self.output, self.distribution_dict())
        return {
            "prediction": self.output,
            "confidence": confidence,
            "distribution": [list(pair) for pair in self.distribution],
            "distribution_unit": self.distribution_unit,
            "count": self.count,
            "path": path,
            "median": self.median,
            "min": self.min,
            "max": self.max,
            "node": self,
        }

    def predict_proportional(
        self,
        input_data: Mapping[str, Any],
        used_fields: set[str],
        path: Optional[list[str]] = None,
        missing_found: bool = False,
        parent: Optional["Tree"] = None,
    ) -> tuple[dict[Any, float], Optional[float], Optional[float], "Tree", float, Optional["Tree"], list[str]]:
        """
        Distribution merged over every leaf reachable by the input.

        Returns:
            (distribution, min, max, last node, population, parent node, path)
        """
        if path is None:
            path = []
        if not self.children:
            return (
                merge_distributions({}, self.distribution_dict()),
                self.min,
                self.max,
                self,
                self.count,
                parent,
                path,
            )

        field = split(self.children)
        if field in input_data:
            used_fields.add(field)
        if one_branch(self.children, input_data) or self.fields.get(field, {}).get("optype") in (TEXT, ITEMS):
            for child in self.children:
                if child.predicate.apply(input_data, self.fields):
                    new_rule = child.predicate.to_rule(self.fields)
                    if new_rule not in path and not missing_found:
                        path.append(new_rule)
                    return child.predict_proportional(
                        input_data, used_fields, path, missing_found, parent=self
                    )
        else:
            # missing split field: every branch contributes with its raw counts
            missing_found = True
            final_distribution: dict[Any, float] = {}
            minimums = []
            maximums = []
            population = 0
            for child in self.children:
                (subtree_distribution, subtree_min, subtree_max, _, subtree_population, _, _) = (
                    child.predict_proportional(
                        input_data, used_fields, path, missing_found, parent=self
                    )
                )
                if subtree_min is not None:
                    minimums.append(subtree_min)
                if subtree_max is not None:
                    maximums.append(subtree_max)
                population += subtree_population
                merge_distributions(final_distribution, subtree_distribution)
            return (
                final_distribution,
                min(minimums) if minimums else None,
                max(maximums) if maximums else None,
                self,
                population,
                self,
                path,
            )

        return (
            merge_distributions({}, self.distribution_dict()),
            self.min,
            self.max,
            self,
            self.count,
            parent,
            path,
        )

    def _predict_proportional_result(self, input_data: Mapping[str, Any], used_fields: set[str]) -> dict[str, Any]:
        (final_distribution, d_min, d_max, last_node, population, parent_node, path) = (
            self.predict_proportional(input_data, used_fields)
        )

        if not self.regression:
            distribution = [
                list(element)
                for element in sorted(final_distribution.items(), key=lambda x: (-x[1], str(x[0])))
            ]
            if not distribution:
                return last_node._node_result(path)
            prediction = distribution[0][0]
            return {
                "prediction": prediction,
                "confidence": ws_confidence(prediction, final_distribution, ws_n=population or None),
                "distribution": distribution,
                "distribution_unit": "categories",
                "count": population,
                "path": path,
                "median": None,
                "min": None,
                "max": None,
                "node": last_node,
            }

        # singular case: the prediction given by a 1-instance node
        if len(final_distribution) == 1:
            _, instances = next(iter(final_distribution.items()))
            if instances == 1:
                result = last_node._node_result(path)
                result["count"] = instances
                return result

        distribution = [list(element) for element in sorted(final_distribution.items(), key=lambda x: x[0])]
        distribution_unit = "bins" if len(distribution) > BINS_LIMIT else "counts"
        distribution = merge_bins(distribution, BINS_LIMIT)
        total_instances = sum(instances for _, instances in distribution)
        if not distribution:
            return last_node._node_result(path)
        if len(distribution) == 1:
            # a single bin has no variance: scale the parent's error instead
            prediction = distribution[0][0]
            if total_instances < 2:
                total_instances = 1
            confidence = None
            if parent_node is not None and parent_node.confidence is not None:
                confidence = round(parent_node.confidence / math.sqrt(total_instances), PRECISION)
        else:
            prediction = mean(distribution)
            confidence = round(
                regression_error(unbiased_sample_variance(distribution, prediction), total_instances),
                PRECISION,
            )
        return {
            "prediction": prediction,
            "confidence": confidence,
            "distribution": distribution,
            "distribution_unit": distribution_unit,
            "count": total_instances,
            "path": path,
            "median": dist_median(distribution, total_instances),
            "min": d_min,
            "max": d_max,
            "node": last_node,
        }
