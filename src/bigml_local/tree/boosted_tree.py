"""
Boosted tree traversal.

Nodes of a boosted tree carry the gradient (``g_sum``) and hessian
(``h_sum``) sums of their instances. With the proportional strategy the
sums of every reachable leaf are added and the output is recomputed as
``-g_sum / (h_sum + lambda)``.
"""

from typing import Any, Mapping, Optional

from ..core.constants import DEFAULT_BOOSTING_LAMBDA, MissingStrategy
from ..core.utils import ITEMS, TEXT
from .predicate import Predicate, predicate_from_node
from .tree import one_branch, split


class BoostedTree:
    """A node of a boosted tree and its subtree."""

    def __init__(
        self,
        tree: Mapping[str, Any],
        fields: Mapping[str, dict],
        objective_field: Optional[str] = None,
        lambda_: float = DEFAULT_BOOSTING_LAMBDA,
    ):
        self.fields = fields
        self.objective_id = objective_field
        self.lambda_ = lambda_
        self.id = tree.get("id")
        self.output = tree.get("output")
        self.predicate: Predicate | bool = predicate_from_node(tree)
        self.count = tree.get("count", 0)
        self.g_sum = tree.get("g_sum", 0.0)
        self.h_sum = tree.get("h_sum", 0.0)
        self.children = [
            BoostedTree(child, fields, objective_field, lambda_) for child in tree.get("children", [])
        ]

    def __repr__(self) -> str:
        return f"BoostedTree(id={self.id!r}, output={self.output!r}, children={len(self.children)})"

    def predict(
        self,
        input_data: Mapping[str, Any],
        missing_strategy: MissingStrategy = MissingStrategy.LAST_PREDICTION,
    ) -> dict[str, Any]:
        """Raw boosting output for casted input data keyed by field id."""
        used_fields: set[str] = set()
        if missing_strategy == MissingStrategy.PROPORTIONAL:
            g_sum, h_sum, population, path = self.predict_proportional(input_data, used_fields)
            return {
                "prediction": -g_sum / (h_sum + self.lambda_),
                "count": population,
                "path": path,
                "used_fields": used_fields,
            }

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
        return {
            "prediction": node.output,
            "count": node.count,
            "path": path,
            "used_fields": used_fields,
        }

    def predict_proportional(
        self,
        input_data: Mapping[str, Any],
        used_fields: set[str],
        path: Optional[list[str]] = None,
        missing_found: bool = False,
    ) -> tuple[float, float, float, list[str]]:
        """
        Gradient and hessian sums over every leaf reachable by the input.

        Returns:
            (g_sum, h_sum, population, path)
        """
        if path is None:
            path = []
        if not self.children:
            return self.g_sum, self.h_sum, self.count, path

        field = split(self.children)
        if field in input_data:
            used_fields.add(field)
        if one_branch(self.children, input_data) or self.fields.get(field, {}).get("optype") in (TEXT, ITEMS):
            for child in self.children:
                if child.predicate.apply(input_data, self.fields):
                    new_rule = child.predicate.to_rule(self.fields)
                    if new_rule not in path and not missing_found:
                        path.append(new_rule)
                    return child.predict_proportional(input_data, used_fields, path, missing_found)
        else:
            missing_found = True
            g_sum = 0.0
            h_sum = 0.0
            population = 0
            for child in self.children:
                subtree_g, subtree_h, subtree_population, _ = child.predict_proportional(
                    input_data, used_fields, path, missing_found
                )
                g_sum += subtree_g
                h_sum += subtree_h
                population += subtree_population
            return g_sum, h_sum, population, path

        return self.g_sum, self.h_sum, self.count, path
