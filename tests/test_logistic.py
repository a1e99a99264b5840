"""
Tests for LocalLogisticRegression scoring.

The fixture regression has one numeric field ``x`` and one categorical
field ``color``; with coefficients +1/-1 on ``x`` and +0.5/-0.5 on ``red``
the input {x: 1, color: red} scores sigmoid(1.5) for ``yes``.
"""

import copy

import pytest

from bigml_local import (
    ConfigurationError,
    LoadError,
    LocalLogisticRegression,
    UnsupportedOperationError,
    ValidationError,
)

from conftest import FLAT_COEFFICIENTS, LOGISTIC_FIELDS, make_logistic

RED = {"x": 1, "color": "red"}


@pytest.fixture
def logistic(logistic_json, settings):
    return LocalLogisticRegression(logistic_json, settings=settings)


# =============================================================================
# Loading
# =============================================================================

class TestLogisticLoading:
    """Parsing the logistic regression JSON."""

    def test_fields_and_classes(self, logistic):
        assert logistic.ready
        assert logistic.input_fields == ["000000", "000001"]
        assert logistic.class_names == ["no", "yes"]
        assert logistic.training_classes == ["yes", "no"]
        assert logistic.numeric_fields == ["000000"]
        assert logistic.categories == {"000001": ["red", "blue"]}

    def test_nested_coefficients_are_split_per_field(self, logistic):
        assert logistic.coefficients["yes"] == {"000000": [1.0], "000001": [0.5, -0.5, 0.0]}
        assert logistic.bias_coefficients == {"yes": 0.0, "no": 0.0}

    def test_flat_coefficients_are_split_by_column(self, settings):
        logistic = LocalLogisticRegression(make_logistic(FLAT_COEFFICIENTS), settings=settings)
        assert logistic.coefficients["no"] == {"000000": [-1.0], "000001": [-0.5, 0.5, 0.0]}

    def test_missing_information(self, logistic_json, settings):
        data = copy.deepcopy(logistic_json)
        del data["object"]["logistic_regression"]
        with pytest.raises(LoadError):
            LocalLogisticRegression(data, settings=settings)

    def test_short_flat_coefficients(self, settings):
        with pytest.raises(LoadError):
            LocalLogisticRegression(make_logistic([["yes", [1.0]], ["no", [-1.0]]]), settings=settings)


# =============================================================================
# Predictions
# =============================================================================

class TestLogisticPredict:
    """Class probabilities."""

    def test_predict(self, logistic):
        prediction = logistic.predict(RED)
        assert prediction.prediction == "yes"
        assert prediction.probability == pytest.approx(0.81757, abs=1e-5)
        assert prediction.distribution == [
            {"category": "yes", "probability": pytest.approx(0.81757, abs=1e-5)},
            {"category": "no", "probability": pytest.approx(0.18243, abs=1e-5)},
        ]
        assert prediction.confidence is None

    def test_predict_probability_in_class_order(self, logistic):
        probabilities = logistic.predict_probability(RED)
        assert [p["category"] for p in probabilities] == ["no", "yes"]

    def test_flat_and_nested_layouts_agree(self, logistic, settings):
        flat = LocalLogisticRegression(make_logistic(FLAT_COEFFICIENTS), settings=settings)
        assert flat.predict(RED).distribution == logistic.predict(RED).distribution

    def test_ties_follow_training_order(self, logistic):
        prediction = logistic.predict({"x": 0})
        assert prediction.prediction == "yes"
        assert prediction.probability == 0.5

    def test_missing_numeric_input(self, logistic):
        with pytest.raises(ValidationError):
            logistic.predict({"color": "red"})

    def test_missing_numerics_coefficient(self, settings):
        coefficients = [
            ["yes", [[1.0, 0.5], [0.5, -0.5, 0.0], [0.0]]],
            ["no", [[-1.0, -0.5], [-0.5, 0.5, 0.0], [0.0]]],
        ]
        logistic = LocalLogisticRegression(
            make_logistic(coefficients, missing_numerics=True), settings=settings
        )
        assert logistic.predict({"color": "red"}).probability == pytest.approx(0.73106, abs=1e-5)

    def test_balanced_fields(self, settings):
        fields = copy.deepcopy(LOGISTIC_FIELDS)
        fields["000000"]["summary"] = {"mean": 1, "standard_deviation": 2}
        data = make_logistic(
            [["yes", [[1.0], [0.5, -0.5, 0.0], [0.0]]], ["no", [[-1.0], [-0.5, 0.5, 0.0], [0.0]]]],
            fields=fields,
            balance_fields=True,
        )
        logistic = LocalLogisticRegression(data, settings=settings)
        assert logistic.predict({"x": 3, "color": "red"}).probability == pytest.approx(0.81757, abs=1e-5)

    def test_normalized_scores(self, settings):
        data = make_logistic(
            [["yes", [[1.0], [0.5, -0.5, 0.0], [0.0]]], ["no", [[-1.0], [-0.5, 0.5, 0.0], [0.0]]]],
            normalize=True,
        )
        logistic = LocalLogisticRegression(data, settings=settings)
        assert logistic.predict(RED).probability == pytest.approx(0.70391, abs=1e-4)

    def test_unused_fields(self, logistic):
        data = {**RED, "label": "no", "shape": "round"}
        assert logistic.predict(data, add_unused_fields=True).unused_fields == ["label", "shape"]


class TestFieldCodings:
    """Contrast and other codings of categorical fields."""

    CODED = [
        ["yes", [[0.0], [2.0], [0.0]]],
        ["no", [[0.0], [-2.0], [0.0]]],
    ]

    @pytest.mark.parametrize(
        "field_codings",
        [
            [{"field": "000001", "coding": "contrast", "coefficients": [[0.5, -0.5, 0.0]]}],
            {"color": {"contrast": [[0.5, -0.5, 0.0]]}},
        ],
    )
    def test_contrast_coding(self, settings, field_codings):
        data = make_logistic(self.CODED, field_codings=field_codings)
        logistic = LocalLogisticRegression(data, settings=settings)
        assert logistic.field_codings == {"000001": {"contrast": [[0.5, -0.5, 0.0]]}}
        red = logistic.predict({"x": 0, "color": "red"})
        assert red.prediction == "yes"
        assert red.probability == pytest.approx(0.73106, abs=1e-5)
        assert logistic.predict({"x": 0, "color": "blue"}).prediction == "no"

    def test_dummy_coding_keeps_expansion(self, settings):
        field_codings = [{"field": "000001", "coding": "dummy", "dummy_class": "blue"}]
        data = make_logistic(
            [["yes", [[1.0], [0.5, -0.5, 0.0], [0.0]]], ["no", [[-1.0], [-0.5, 0.5, 0.0], [0.0]]]],
            field_codings=field_codings,
        )
        logistic = LocalLogisticRegression(data, settings=settings)
        assert logistic.predict(RED).probability == pytest.approx(0.81757, abs=1e-5)


class TestTextFields:
    """Tag cloud expansion of text fields."""

    def test_term_occurrences(self, settings):
        fields = copy.deepcopy(LOGISTIC_FIELDS)
        fields["000003"] = {
            "name": "review",
            "optype": "text",
            "column_number": 3,
            "term_analysis": {"case_sensitive": False, "token_mode": "tokens_only"},
            "summary": {"tag_cloud": [["good", 3], ["bad", 2]], "term_forms": {}},
        }
        data = make_logistic(
            [
                ["yes", [[0.0], [0.0, 0.0, 0.0], [1.0, -1.0, 0.0], [0.0]]],
                ["no", [[0.0], [0.0, 0.0, 0.0], [-1.0, 1.0, 0.0], [0.0]]],
            ],
            fields=fields,
        )
        data["object"]["input_fields"].append("000003")
        logistic = LocalLogisticRegression(data, settings=settings)

        prediction = logistic.predict({"x": 0, "review": "Good, good"})
        assert prediction.prediction == "yes"
        assert prediction.probability == pytest.approx(0.88080, abs=1e-5)
        assert logistic.predict({"x": 0, "review": "bad"}).prediction == "no"


# =============================================================================
# Operating points and kinds
# =============================================================================

class TestLogisticOperating:
    """Only the probability kind is defined."""

    def test_operating_point(self, logistic):
        point = {"positive_class": "no", "threshold": 0.1}
        prediction = logistic.predict_operating(RED, point)
        assert prediction.prediction == "no"
        assert prediction.probability == pytest.approx(0.18243, abs=1e-5)

    def test_operating_kind(self, logistic):
        assert logistic.predict_operating_kind(RED, "probability").prediction == "yes"

    def test_confidence_is_unsupported(self, logistic):
        with pytest.raises(UnsupportedOperationError):
            logistic.predict_confidence(RED)
        with pytest.raises(ConfigurationError):
            logistic.predict_operating_kind(RED, "confidence")
        with pytest.raises(ConfigurationError):
            logistic.predict_operating(RED, {"positive_class": "no", "kind": "confidence", "threshold": 0.5})
