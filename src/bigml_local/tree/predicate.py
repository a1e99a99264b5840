"""
Predicates guarding the branches of a decision tree.

A predicate compares one input field with a reference value. Text and
items fields compare the number of occurrences of a term instead of the
raw value. A trailing ``*`` in the operator means the branch is also
followed when the field is missing.
"""

import operator as op
from typing import Any, Mapping, Optional

from ..core.constants import TM_ALL, TM_FULL_TERM, TM_TOKENS
from ..core.utils import FULL_TERM_PATTERN, TEXT, item_matches, term_matches

OPERATORS = {
    "<": op.lt,
    "<=": op.le,
    "=": op.eq,
    "!=": op.ne,
    "/=": op.ne,
    ">=": op.ge,
    ">": op.gt,
    "in": op.contains,
}

RELATIONS = {
    "<=": "no more than {} {}",
    ">=": "{} {} at least",
    ">": "more than {} {}",
    "<": "less than {} {}",
}


def _plural(text: str, count: Any) -> str:
    return text if count == 1 else f"{text}s"


class Predicate:
    """A comparison applied to one input field."""

    def __init__(self, operator: str, field: str, value: Any, term: Optional[str] = None):
        self.missing = operator.endswith("*")
        self.operator = operator[:-1] if self.missing else operator
        if self.operator not in OPERATORS:
            raise ValueError(f"Unknown predicate operator: {operator}")
        self.field = field
        self.value = value
        self.term = term

    @classmethod
    def from_dict(cls, predicate: Mapping[str, Any]) -> "Predicate":
        return cls(
            predicate["operator"],
            predicate["field"],
            predicate.get("value"),
            predicate.get("term"),
        )

    def __repr__(self) -> str:
        return f"Predicate({self.operator!r}, {self.field!r}, {self.value!r}, term={self.term!r})"

    def is_full_term(self, fields: Mapping[str, dict]) -> bool:
        """Whether the term is compared as a whole text value."""
        if self.term is None or fields[self.field].get("optype") != TEXT:
            return False
        options = fields[self.field].get("term_analysis", {})
        token_mode = options.get("token_mode", TM_TOKENS)
        if token_mode == TM_FULL_TERM:
            return True
        if token_mode == TM_ALL:
            return bool(FULL_TERM_PATTERN.match(self.term))
        return False

    def to_rule(self, fields: Mapping[str, dict], label: str = "name") -> str:
        """Human readable form of the predicate, using field names."""
        name = fields[self.field].get(label, self.field)
        relation_missing = " or missing" if self.missing else ""
        if self.term is not None:
            full_term = self.is_full_term(fields)
            relation_suffix = ""
            if (self.operator == "<" and self.value <= 1) or (
                self.operator == "<=" and self.value == 0
            ):
                relation_literal = "is not equal to" if full_term else "does not contain"
            else:
                relation_literal = "is equal to" if full_term else "contains"
                if not full_term and self.operator in RELATIONS and (
                    self.operator != ">" or self.value != 0
                ):
                    relation_suffix = " " + RELATIONS[self.operator].format(
                        self.value, _plural("time", self.value)
                    )
            return f"{name} {relation_literal} {self.term}{relation_suffix}{relation_missing}"
        if self.value is None:
            return f"{name} {'is missing' if self.operator == '=' else 'is not missing'}"
        return f"{name} {self.operator} {self.value}{relation_missing}"

    def apply(self, input_data: Mapping[str, Any], fields: Mapping[str, dict]) -> bool:
        """Evaluate the predicate against already casted input data."""
        if self.field not in input_data:
            return self.missing or (self.operator == "=" and self.value is None)
        if self.operator == "!=" and self.value is None:
            return True
        if self.value is None:
            # "= missing" on a present field
            return False

        input_value = input_data[self.field]
        if self.term is not None:
            field = fields[self.field]
            if field.get("optype") == TEXT:
                forms = field.get("summary", {}).get("term_forms", {}).get(self.term, [])
                occurrences = term_matches(
                    input_value, [self.term] + forms, field.get("term_analysis", {})
                )
            else:
                occurrences = item_matches(input_value, self.term, field.get("item_analysis", {}))
            return OPERATORS[self.operator](occurrences, self.value)
        if self.operator == "in":
            return OPERATORS["in"](self.value, input_value)
        return OPERATORS[self.operator](input_value, self.value)


def predicate_from_node(node: Mapping[str, Any]) -> Predicate | bool:
    """Node predicates are either ``true`` (the root) or a predicate dict."""
    predicate = node.get("predicate", True)
    if predicate is True:
        return True
    return Predicate.from_dict(predicate)
