"""
Numeric and text helpers shared by every local predictor.

Pure functions, no state: rounding, Wilson score confidence, input
casting, tokenizing and distribution bookkeeping.
"""

import math
import re
from typing import Any, Iterable, Mapping

from .constants import DEFAULT_WS_Z, PRECISION, TM_ALL, TM_FULL_TERM, TM_TOKENS
from .errors import ValidationError

NUMERIC = "numeric"
CATEGORICAL = "categorical"
TEXT = "text"
ITEMS = "items"

TERM_PATTERN = re.compile(r"(\b|_)([^\b_\s]+?)(\b|_)", flags=re.U)
FULL_TERM_PATTERN = re.compile(r"^.+\b.+$", flags=re.U)


# =============================================================================
# Numbers
# =============================================================================

def dec_round(value: float, precision: int = PRECISION) -> float:
    """Round to a fixed number of decimals (5 by default)."""
    return round(value, precision)


def ws_confidence(
    prediction: Any,
    distribution: Mapping[Any, float] | Iterable,
    ws_n: float | None = None,
    ws_z: float = DEFAULT_WS_Z,
) -> float:
    """
    Wilson score interval lower bound for the predicted category.

    Args:
        prediction: Category whose confidence is computed
        distribution: Category -> instances mapping (or [category, count] pairs)
        ws_n: Total instances, defaults to the distribution sum. Weighted
            distributions can total less than one instance; those count as one.
        ws_z: Normal quantile of the confidence level

    Returns:
        Confidence rounded to 5 decimals
    """
    if not isinstance(distribution, Mapping):
        distribution = dict(distribution)
    ws_p = float(distribution.get(prediction, 0))
    ws_norm = float(sum(distribution.values()))
    if ws_norm == 0:
        return 0.0
    if ws_norm != 1.0:
        ws_p /= ws_norm
    ws_n = max(ws_norm if ws_n is None else float(ws_n), 1.0)
    ws_z2 = ws_z * ws_z
    ws_factor = ws_z2 / ws_n
    ws_sqrt = math.sqrt((ws_p * (1 - ws_p) + ws_factor / 4) / ws_n)
    return dec_round((ws_p + ws_factor / 2 - ws_z * ws_sqrt) / (1 + ws_factor))


def softmax(scores: Mapping[str, float]) -> dict[str, float]:
    """Normalized exponentials of a category -> score mapping."""
    if not scores:
        return {}
    top = max(scores.values())
    exps = {category: math.exp(score - top) for category, score in scores.items()}
    total = sum(exps.values())
    return {category: value / total for category, value in exps.items()}


def sigmoid(score: float) -> float:
    try:
        return 1 / (1 + math.exp(-score))
    except OverflowError:
        return 0.0 if score < 0 else 1.0


# =============================================================================
# Distributions
# =============================================================================

def merge_distributions(
    distribution: dict[Any, float],
    new_distribution: Mapping[Any, float],
) -> dict[Any, float]:
    """Add the counts of new_distribution into distribution (in place)."""
    for value, instances in new_distribution.items():
        distribution[value] = distribution.get(value, 0) + instances
    return distribution


# =============================================================================
# Fields and input data
# =============================================================================

def invert_dictionary(fields: Mapping[str, dict], key: str = "name") -> dict[str, str]:
    """Map each field's ``key`` attribute (its name by default) to its id."""
    return {field[key]: field_id for field_id, field in fields.items() if key in field}


def strip_affixes(value: str, field: Mapping[str, Any]) -> str:
    """Strip the numeric field prefix and suffix from a string value."""
    prefix = field.get("prefix")
    suffix = field.get("suffix")
    if prefix and value.startswith(prefix):
        value = value[len(prefix):]
    if suffix and value.endswith(suffix):
        value = value[: -len(suffix)]
    return value


def _category_for_boolean(value: bool, field: Mapping[str, Any]) -> str:
    categories = [category for category, _ in field.get("summary", {}).get("categories", [])]
    if len(categories) != 2:
        raise ValidationError(
            f"Boolean value {value} cannot be used for field "
            f"\"{field.get('name')}\": it has {len(categories)} categories."
        )
    literal = str(value).lower()
    for category in categories:
        if str(category).lower() == literal:
            return category
    raise ValidationError(
        f"Boolean value {value} matches no category of field \"{field.get('name')}\"."
    )


def cast(input_data: Mapping[str, Any], fields: Mapping[str, dict]) -> dict[str, Any]:
    """
    Return a copy of input_data with values coerced to their field types.

    Numeric strings lose their prefix/suffix and are rounded to 5 decimals;
    non-numeric fields receive strings.

    Raises:
        ValidationError: If a value cannot be coerced
    """
    casted: dict[str, Any] = {}
    for field_id, value in input_data.items():
        field = fields[field_id]
        optype = field.get("optype")
        if optype == NUMERIC:
            if isinstance(value, bool):
                raise ValidationError(
                    f"Mismatch input data type in field \"{field.get('name')}\" "
                    f"for value {value}."
                )
            if isinstance(value, str):
                try:
                    value = dec_round(float(strip_affixes(value.strip(), field)))
                except ValueError:
                    raise ValidationError(
                        f"Mismatch input data type in field \"{field.get('name')}\" "
                        f"for value {value}."
                    ) from None
            elif not isinstance(value, (int, float)):
                raise ValidationError(
                    f"Mismatch input data type in field \"{field.get('name')}\" "
                    f"for value {value}."
                )
        elif isinstance(value, bool) and optype == CATEGORICAL:
            value = _category_for_boolean(value, field)
        elif not isinstance(value, str):
            value = str(value)
        casted[field_id] = value
    return casted


# =============================================================================
# Text and items
# =============================================================================

def parse_terms(text: str | None, case_sensitive: bool = True) -> list[str]:
    """Split text into word tokens."""
    if text is None:
        return []
    return [
        match[1] if case_sensitive else match[1].lower()
        for match in TERM_PATTERN.findall(text)
    ]


def parse_items(text: str | None, regexp: str) -> list[str]:
    """Split an items string by its separator regexp."""
    if text is None:
        return []
    return [item.strip() for item in re.split(regexp, text, flags=re.U)]


def items_regexp(options: Mapping[str, Any]) -> str:
    regexp = options.get("separator_regexp")
    if regexp is None:
        regexp = re.escape(options.get("separator", " "))
    return regexp


def get_unique_terms(
    terms: Iterable[str],
    term_forms: Mapping[str, list[str]],
    tag_cloud: Iterable[str],
) -> dict[str, int]:
    """Count the terms that are in the tag cloud, folding alternative forms."""
    tag_cloud = set(tag_cloud)
    extend_forms: dict[str, str] = {}
    for term, forms in term_forms.items():
        for form in forms:
            extend_forms[form] = term
        extend_forms[term] = term
    terms_set: dict[str, int] = {}
    for term in terms:
        if term in tag_cloud:
            terms_set[term] = terms_set.get(term, 0) + 1
        elif term in extend_forms:
            term = extend_forms[term]
            terms_set[term] = terms_set.get(term, 0) + 1
    return terms_set


def full_term_match(text: str, full_term: str, case_sensitive: bool) -> int:
    if not case_sensitive:
        text = text.lower()
        full_term = full_term.lower()
    return 1 if text == full_term else 0


def term_matches(text: str, forms_list: list[str], options: Mapping[str, Any]) -> int:
    """
    Number of occurrences of a term (or any of its forms) in a text.

    Full-term token modes compare the whole text instead of counting tokens.
    """
    token_mode = options.get("token_mode", TM_TOKENS)
    case_sensitive = options.get("case_sensitive", False)
    first_term = forms_list[0]
    if token_mode == TM_FULL_TERM:
        return full_term_match(text, first_term, case_sensitive)
    if token_mode == TM_ALL and len(forms_list) == 1 and FULL_TERM_PATTERN.match(first_term):
        return full_term_match(text, first_term, case_sensitive)
    flags = re.U if case_sensitive else re.U | re.I
    expression = r"(\b|_)%s(\b|_)" % r"(\b|_)|(\b|_)".join(re.escape(term) for term in forms_list)
    return len(re.findall(expression, text, flags=flags))


def item_matches(text: str, item: str, options: Mapping[str, Any]) -> int:
    """Number of occurrences of an item in an items string."""
    regexp = items_regexp(options)
    expression = r"(^|%s)%s($|%s)" % (regexp, re.escape(item), regexp)
    return len(re.findall(expression, text, flags=re.U))
