"""
Local predictions for logistic regressions.

    logistic = LocalLogisticRegression("logisticregression/5143a51a37203f2cf7000981")
    logistic.predict({"petal length": 3, "species": "Iris-setosa"})

Coefficients arrive in one of two layouts: the nested one (one list per
input field, in ``input_fields`` order, followed by ``[bias]``) or the
legacy flat one (a single list sliced by field column order). Both are
normalized at load time to ``{category: {field_id: [coefficients]}}``.
Field codings also arrive as a list of ``{field, coding, ...}`` dicts or as
a ``{field_id: {coding: value}}`` mapping and are normalized to the latter.
"""

import copy
import logging
import math
from typing import Any, Mapping

from ..core.constants import TM_FULL_TERM, TM_TOKENS
from ..core.errors import LoadError, UnsupportedOperationError, ValidationError
from ..core.models import Prediction, PredictOptions
from ..core.utils import (
    CATEGORICAL,
    ITEMS,
    NUMERIC,
    TEXT,
    dec_round,
    get_unique_terms,
    items_regexp,
    parse_items,
    parse_terms,
    sigmoid,
)
from .base import LocalResource

logger = logging.getLogger(__name__)

EXPANSION_ATTRIBUTES = {CATEGORICAL: "categories", TEXT: "tag_cloud", ITEMS: "items"}
DUMMY = "dummy"


class LocalLogisticRegression(LocalResource):
    """A logistic regression that predicts locally."""

    resource_type = "logisticregression"
    operating_kinds = ("probability",)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _fill(self, data: Any) -> None:
        if not isinstance(data, Mapping):
            raise LoadError(f"Cannot build a local logistic regression from {type(data).__name__}")
        self._check_resource_type(data)
        resource = data.get("object", data)
        info = resource.get("logistic_regression")
        if not isinstance(info, Mapping):
            raise LoadError(
                "Cannot create the local logistic regression: the resource has no "
                "'logistic_regression' information"
            )

        fields = copy.deepcopy(info.get("fields", {}))
        objective_fields = resource.get("objective_fields")
        objective_id = objective_fields[0] if objective_fields else resource.get("objective_field")
        if objective_id not in fields:
            raise LoadError(f"Objective field {objective_id} not found in the logistic regression fields")
        self._set_fields(fields, objective_id)

        self.input_fields = [
            field_id
            for field_id in resource.get("input_fields") or self._fields_by_column()
            if field_id != objective_id and field_id in fields
        ]
        self.bias = info.get("bias", True)
        self.c = info.get("c")
        self.eps = info.get("eps")
        self.lr_normalize = info.get("normalize", False)
        self.balance_fields = info.get("balance_fields", False)
        self.regularization = info.get("regularization")
        self.missing_numerics = info.get("missing_numerics", False)

        self.training_classes = [
            category for category, _ in fields[objective_id].get("summary", {}).get("categories", [])
        ]
        self.term_forms: dict[str, dict[str, list[str]]] = {}
        self.tag_clouds: dict[str, list[str]] = {}
        self.term_analysis: dict[str, dict[str, Any]] = {}
        self.items: dict[str, list[str]] = {}
        self.item_analysis: dict[str, dict[str, Any]] = {}
        self.categories: dict[str, list[str]] = {}
        self.numeric_fields: list[str] = []
        for field_id in self.input_fields:
            field = fields[field_id]
            optype = field.get("optype")
            summary = field.get("summary", {})
            if optype == NUMERIC:
                self.numeric_fields.append(field_id)
            elif optype == TEXT:
                self.term_forms[field_id] = summary.get("term_forms", {})
                self.tag_clouds[field_id] = [term for term, _ in summary.get("tag_cloud", [])]
                self.term_analysis[field_id] = field.get("term_analysis", {})
            elif optype == ITEMS:
                self.items[field_id] = [item for item, _ in summary.get("items", [])]
                self.item_analysis[field_id] = field.get("item_analysis", {})
            elif optype == CATEGORICAL:
                self.categories[field_id] = [category for category, _ in summary.get("categories", [])]

        self.field_codings = self._normalize_field_codings(info.get("field_codings") or {})
        self.coefficients: dict[str, dict[str, list[float]]] = {}
        self.bias_coefficients: dict[str, float] = {}
        for category, coefficients in info.get("coefficients", []):
            fields_coefficients, bias = self._map_coefficients(coefficients)
            self.coefficients[category] = fields_coefficients
            self.bias_coefficients[category] = bias
        if not self.coefficients:
            raise LoadError("The logistic regression has no coefficients")
        for category in self.coefficients:
            if category not in self.training_classes:
                self.training_classes.append(category)
        if not self.class_names:
            self.class_names = sorted(self.coefficients)

        logger.debug(
            f"Parsed logistic regression {self.resource_id}: {len(self.input_fields)} input fields, "
            f"{len(self.coefficients)} classes"
        )
        return None

    def _fields_by_column(self) -> list[str]:
        return sorted(
            (field_id for field_id in self.fields if field_id != self.objective_id),
            key=lambda field_id: self.fields[field_id].get("column_number", 0),
        )

    def _normalize_field_codings(self, field_codings: Any) -> dict[str, dict[str, Any]]:
        """``{field_id: {coding: dummy_class | contributions matrix}}``"""
        if isinstance(field_codings, Mapping):
            elements = [
                {"field": field_id, "coding": coding, "value": value}
                for field_id, coding_info in field_codings.items()
                for coding, value in coding_info.items()
            ]
        else:
            elements = [
                {
                    "field": element["field"],
                    "coding": element["coding"],
                    "value": element.get("dummy_class")
                    if element["coding"] == DUMMY
                    else element.get("coefficients"),
                }
                for element in field_codings
            ]
        normalized = {}
        for element in elements:
            field_id = element["field"]
            if field_id not in self.fields:
                field_id = self.inverted_fields.get(field_id, field_id)
            normalized[field_id] = {element["coding"]: element["value"]}
        return normalized

    def _is_dummy(self, field_id: str) -> bool:
        coding = self.field_codings.get(field_id)
        return coding is None or next(iter(coding)) == DUMMY

    def _contributions(self, field_id: str) -> list[list[float]]:
        return next(iter(self.field_codings[field_id].values()))

    def _coefficients_length(self, field_id: str) -> int:
        optype = self.fields[field_id].get("optype")
        if optype == NUMERIC:
            return 2 if self.missing_numerics else 1
        if optype == CATEGORICAL and not self._is_dummy(field_id):
            return len(self._contributions(field_id))
        if optype in EXPANSION_ATTRIBUTES:
            expansion = {CATEGORICAL: self.categories, TEXT: self.tag_clouds, ITEMS: self.items}[optype]
            return len(expansion.get(field_id, [])) + 1
        return 0

    def _map_coefficients(self, coefficients: list) -> tuple[dict[str, list[float]], float]:
        """
        Split one category's coefficients per field.

        Returns:
            (field id -> coefficients, bias coefficient)
        """
        if coefficients and isinstance(coefficients[0], list):
            fields_coefficients = dict(zip(self.input_fields, coefficients))
            extra = coefficients[len(self.input_fields):]
            bias = extra[0][0] if extra and extra[0] else 0.0
            return fields_coefficients, bias

        fields_coefficients = {}
        shift = 0
        for field_id in sorted(self.input_fields, key=lambda f: self.fields[f].get("column_number", 0)):
            length = self._coefficients_length(field_id)
            fields_coefficients[field_id] = coefficients[shift:shift + length]
            shift += length
        if shift > len(coefficients):
            raise LoadError(
                f"The logistic regression coefficients do not match its fields "
                f"({len(coefficients)} coefficients, {shift} expected)"
            )
        bias = coefficients[shift] if self.bias and shift < len(coefficients) else 0.0
        return fields_coefficients, bias

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def _normalize_numeric(self, field_id: str, value: float) -> float:
        summary = self.fields[field_id].get("summary", {})
        mean = summary.get("mean", 0)
        stddev = summary.get("standard_deviation", 0)
        if stddev:
            return (value - mean) / stddev
        return value - mean

    def _unique_terms(self, data: Mapping[str, Any]) -> dict[str, dict[str, int]]:
        """Occurrences of every known term, item or category in the input."""
        unique_terms: dict[str, dict[str, int]] = {}
        for field_id, tag_cloud in self.tag_clouds.items():
            if field_id not in data:
                continue
            value = data[field_id]
            analysis = self.term_analysis[field_id]
            case_sensitive = analysis.get("case_sensitive", True)
            token_mode = analysis.get("token_mode", "all")
            terms: list[str] = []
            if token_mode != TM_FULL_TERM:
                terms = parse_terms(value, case_sensitive=case_sensitive)
            if token_mode != TM_TOKENS:
                terms.append(value if case_sensitive else value.lower())
            unique_terms[field_id] = get_unique_terms(terms, self.term_forms[field_id], tag_cloud)
        for field_id, items in self.items.items():
            if field_id not in data:
                continue
            regexp = items_regexp(self.item_analysis[field_id])
            unique_terms[field_id] = get_unique_terms(parse_items(data[field_id], regexp), {}, items)
        for field_id in self.categories:
            if field_id in data:
                unique_terms[field_id] = {data[field_id]: 1}
        return unique_terms

    def category_score(
        self,
        category: str,
        numeric_inputs: Mapping[str, float],
        unique_terms: Mapping[str, Mapping[str, int]],
    ) -> float:
        """Sigmoid of the linear score of one category."""
        coefficients = self.coefficients[category]
        score = self.bias_coefficients[category]
        norm2 = 1 if self.bias else 0

        for field_id, value in numeric_inputs.items():
            score += coefficients[field_id][0] * value
            norm2 += value ** 2

        for field_id, terms in unique_terms.items():
            field_coefficients = coefficients[field_id]
            for term, occurrences in terms.items():
                if field_id in self.tag_clouds:
                    expansion = self.tag_clouds[field_id]
                elif field_id in self.items:
                    expansion = self.items[field_id]
                else:
                    expansion = self.categories[field_id]
                if term not in expansion:
                    continue
                index = expansion.index(term)
                if field_id in self.categories and not self._is_dummy(field_id):
                    for coefficient, contribution in zip(field_coefficients, self._contributions(field_id)):
                        score += coefficient * contribution[index] * occurrences
                else:
                    score += field_coefficients[index] * occurrences
                norm2 += occurrences ** 2

        # missing values have their own coefficient
        if self.missing_numerics:
            for field_id in self.numeric_fields:
                if field_id not in numeric_inputs:
                    score += coefficients[field_id][1]
                    norm2 += 1
        for field_id, expansion in list(self.tag_clouds.items()) + list(self.items.items()):
            if not unique_terms.get(field_id):
                score += coefficients[field_id][len(expansion)]
                norm2 += 1
        for field_id, expansion in self.categories.items():
            if field_id in unique_terms:
                continue
            norm2 += 1
            if self._is_dummy(field_id):
                score += coefficients[field_id][len(expansion)]
            else:
                for coefficient, contribution in zip(coefficients[field_id], self._contributions(field_id)):
                    score += coefficient * contribution[-1]

        if self.lr_normalize:
            score = score / math.sqrt(norm2) if norm2 else float("nan")
        return sigmoid(score)

    def raw_predict(self, input_data: Mapping[str, Any]) -> dict[str, Any]:
        """
        Probabilities of every class, sorted by decreasing probability.

        Raises:
            ValidationError: If a numeric input is missing and the model
                was not trained with missing numerics
        """
        data, keys, unknown = self.filter_input(input_data)
        if not self.missing_numerics:
            for field_id in self.numeric_fields:
                if field_id not in data:
                    raise ValidationError(
                        "Failed to predict. Input data must contain values for all "
                        "numeric fields to get a logistic regression prediction."
                    )

        numeric_inputs = {}
        for field_id in self.numeric_fields:
            if field_id in data:
                value = data[field_id]
                numeric_inputs[field_id] = (
                    self._normalize_numeric(field_id, value) if self.balance_fields else value
                )
        unique_terms = self._unique_terms(data)

        scores = {category: self.category_score(category, numeric_inputs, unique_terms) for category in self.coefficients}
        total = sum(scores.values())
        order = {category: index for index, category in enumerate(self.training_classes)}
        distribution = sorted(
            (
                {"category": category, "probability": dec_round(score / total) if total else 0.0}
                for category, score in scores.items()
            ),
            key=lambda d: (-d["probability"], order[d["category"]]),
        )
        used = set(self.input_fields)
        return {
            "prediction": distribution[0]["category"],
            "probability": distribution[0]["probability"],
            "distribution": distribution,
            "unused_fields": self.unused_fields(keys, unknown, used),
        }

    # ------------------------------------------------------------------
    # LocalResource hooks
    # ------------------------------------------------------------------

    def _predict(self, input_data: Mapping[str, Any], options: PredictOptions) -> Prediction:
        result = self.raw_predict(input_data)
        return Prediction(
            prediction=result["prediction"],
            probability=result["probability"],
            distribution=result["distribution"],
            unused_fields=result["unused_fields"] if options.add_unused_fields else None,
        )

    def _distribution_for(self, kind: str, input_data: Mapping[str, Any], options: PredictOptions) -> list[dict[str, Any]]:
        if kind != "probability":
            raise UnsupportedOperationError(f"Logistic regressions cannot predict {kind}")
        return self._ordered(self.raw_predict(input_data)["distribution"])
