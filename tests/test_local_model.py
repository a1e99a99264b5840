"""
Tests for LocalModel predictions.

Uses the iris-like tree, the two-class Laplace example and the small
regression tree from conftest. Everything here loads synchronously from
in-memory JSON.
"""

import copy
from unittest.mock import Mock

import pytest

from bigml_local import (
    ConfigurationError,
    LoadError,
    LocalModel,
    MissingStrategy,
    OperatingPoint,
    Prediction,
    UnsupportedOperationError,
    ValidationError,
)
from bigml_local.core.utils import ws_confidence

from conftest import CLASS_FIELDS, IRIS_MODEL_ID, make_model, model_id, stump_root

VIRGINICA = {"petal length": 5, "petal width": 2}


@pytest.fixture
def iris(iris_model_json, settings):
    return LocalModel(iris_model_json, settings=settings)


@pytest.fixture
def regression(regression_model_json, settings):
    return LocalModel(regression_model_json, settings=settings)


# =============================================================================
# Loading
# =============================================================================

class TestModelLoading:
    """Building a model from its JSON."""

    def test_inline_json_is_ready_immediately(self, iris):
        assert iris.ready
        assert iris.resource_id == IRIS_MODEL_ID
        assert iris.objective_id == "000004"
        assert iris.class_names == ["Iris-setosa", "Iris-versicolor", "Iris-virginica"]
        assert not iris.regression

    def test_regression_detection(self, regression):
        assert regression.regression
        assert regression.class_names == []

    def test_wrong_resource_type(self, iris_model_json, settings):
        data = copy.deepcopy(iris_model_json)
        data["resource"] = "ensemble/5143a51a37203f2cf7000972"
        data["object"]["resource"] = data["resource"]
        with pytest.raises(LoadError):
            LocalModel(data, settings=settings)

    def test_missing_model_information(self, iris_model_json, settings):
        data = copy.deepcopy(iris_model_json)
        del data["object"]["model"]["root"]
        with pytest.raises(LoadError) as exc_info:
            LocalModel(data, settings=settings)
        assert exc_info.value.code == "LOAD_ERROR"

    def test_incomplete_model_fields(self, iris_model_json, settings):
        data = copy.deepcopy(iris_model_json)
        data["object"]["model"]["model_fields"] = {"000009": {"optype": "numeric"}}
        with pytest.raises(LoadError):
            LocalModel(data, settings=settings)

    def test_unfinished_json_without_id(self, settings):
        with pytest.raises(LoadError):
            LocalModel({"object": {"model": {}}}, settings=settings)

    def test_training_distribution_is_preferred(self, binary_model_json, settings):
        data = copy.deepcopy(binary_model_json)
        data["object"]["model"]["distribution"] = {"training": {"categories": [["A", 1], ["B", 1]]}}
        model = LocalModel(data, settings=settings)
        assert model.root_distribution == {"A": 1, "B": 1}


# =============================================================================
# Predictions
# =============================================================================

class TestClassificationPredict:
    """Single predictions of a classification tree."""

    def test_predict_by_field_names(self, iris):
        prediction = iris.predict(VIRGINICA)
        assert isinstance(prediction, Prediction)
        assert prediction.prediction == "Iris-virginica"
        assert prediction.confidence == 0.88428
        assert prediction.probability == pytest.approx(0.96454, abs=1e-5)
        assert prediction.count == 46
        assert prediction.path == ["petal length > 2.45", "petal width > 1.75"]
        assert prediction.distribution == [["Iris-versicolor", 1], ["Iris-virginica", 45]]

    def test_predict_by_field_ids(self, iris):
        assert iris.predict({"000002": 5, "000003": 2}).prediction == "Iris-virginica"

    def test_numeric_strings_are_casted(self, iris):
        assert iris.predict({"petal length": "1.2"}).prediction == "Iris-setosa"

    def test_none_values_are_ignored(self, iris):
        assert iris.predict({"petal length": None}).prediction == "Iris-setosa"

    def test_proportional_strategy(self, iris):
        prediction = iris.predict({"petal length": 5}, missing_strategy=MissingStrategy.PROPORTIONAL)
        assert prediction.prediction == "Iris-versicolor"
        assert prediction.confidence == pytest.approx(0.40383, abs=1e-5)
        assert prediction.count == 100

    def test_options_dict_with_camel_case(self, iris):
        prediction = iris.predict({"petal length": 5}, {"missingStrategy": 1})
        assert prediction.count == 100

    def test_unused_fields(self, iris):
        data = {**VIRGINICA, "sepal length": 6, "species": "Iris-setosa", "color": "blue"}
        prediction = iris.predict(data, add_unused_fields=True)
        assert prediction.unused_fields == ["species", "color", "sepal length"]

    def test_unused_fields_are_opt_in(self, iris):
        assert iris.predict({"sepal length": 6}).unused_fields is None

    def test_to_dict_drops_missing_keys(self, iris):
        result = iris.predict(VIRGINICA).to_dict()
        assert result["prediction"] == "Iris-virginica"
        assert "median" not in result
        assert "unused_fields" not in result

    def test_input_is_not_modified(self, iris):
        data = {"petal length": "5", "petal width": "2"}
        iris.predict(data)
        assert data == {"petal length": "5", "petal width": "2"}


class TestRegressionPredict:
    """Single predictions of a regression tree."""

    def test_predict(self, regression):
        prediction = regression.predict({"x": 1})
        assert prediction.prediction == 1.33333
        assert prediction.confidence == 1.2
        assert prediction.median == 1
        assert prediction.min == 1
        assert prediction.max == 2
        assert prediction.probability is None

    def test_use_median(self, regression):
        assert regression.predict({"x": 1}, median=True).prediction == 1

    def test_proportional(self, regression):
        prediction = regression.predict({}, missing_strategy=MissingStrategy.PROPORTIONAL)
        assert prediction.prediction == pytest.approx(2.2)
        assert prediction.median == 2
        assert (prediction.min, prediction.max) == (1, 4)

    def test_per_class_measures_are_unsupported(self, regression):
        with pytest.raises(UnsupportedOperationError):
            regression.predict_probability({"x": 1})
        with pytest.raises(UnsupportedOperationError):
            regression.predict_confidence({"x": 1})


class TestValidation:
    """Malformed inputs."""

    def test_uncastable_value(self, iris):
        with pytest.raises(ValidationError):
            iris.predict({"petal length": "long"})

    def test_input_must_be_a_mapping(self, iris):
        with pytest.raises(ValidationError):
            iris.predict(["petal length", 5])

    def test_validation_error_goes_to_callback(self, iris):
        callback = Mock()
        assert iris.predict({"petal length": "long"}, callback=callback) is None
        error, result = callback.call_args.args
        assert isinstance(error, ValidationError)
        assert result is None

    def test_callback_receives_result(self, iris):
        callback = Mock()
        prediction = iris.predict(VIRGINICA, callback=callback)
        callback.assert_called_once_with(None, prediction)

    def test_missing_numerics_required(self, settings):
        data = make_model(model_id(2), CLASS_FIELDS, "000001", stump_root("A", 10, 0.7), missing_numerics=False)
        model = LocalModel(data, settings=settings)
        with pytest.raises(ValidationError):
            model.predict({})
        assert model.predict({"x": 3}).prediction == "A"

    def test_malformed_options(self, iris):
        with pytest.raises(ConfigurationError):
            iris.predict(VIRGINICA, missing_strategy=7)


# =============================================================================
# Probabilities and confidences
# =============================================================================

class TestDistributions:
    """Per-class probabilities and confidences."""

    def test_laplace_corrected_probabilities(self, binary_model_json, settings):
        model = LocalModel(binary_model_json, settings=settings)
        assert model.predict_probability({"x": 0}) == [
            {"category": "A", "probability": pytest.approx(0.93333, abs=1e-5)},
            {"category": "B", "probability": pytest.approx(0.06667, abs=1e-5)},
        ]

    def test_probabilities_in_class_order(self, iris):
        probabilities = iris.predict_probability(VIRGINICA)
        assert [p["category"] for p in probabilities] == iris.class_names
        assert [p["probability"] for p in probabilities] == pytest.approx([0.00709, 0.02837, 0.96454], abs=1e-5)

    def test_confidences(self, iris):
        confidences = iris.predict_confidence(VIRGINICA)
        leaf = {"Iris-versicolor": 1, "Iris-virginica": 45}
        assert confidences == [
            {"category": "Iris-setosa", "confidence": ws_confidence("Iris-setosa", leaf)},
            {"category": "Iris-versicolor", "confidence": ws_confidence("Iris-versicolor", leaf)},
            {"category": "Iris-virginica", "confidence": ws_confidence("Iris-virginica", leaf)},
        ]

    def test_weighted_tree_uses_leaf_weights(self, settings):
        root = stump_root("A", 4, 0.5)
        root["weighted_objective_summary"] = {"categories": [["A", 3], ["B", 1]]}
        model = LocalModel(make_model(model_id(3), CLASS_FIELDS, "000001", root), settings=settings)
        assert model.weighted
        assert model.predict_probability({}) == [
            {"category": "A", "probability": 0.75},
            {"category": "B", "probability": 0.25},
        ]

    def test_weighted_leaf_under_one_instance(self, settings):
        root = stump_root("A", 5, 0.5)
        root["weighted_objective_summary"] = {"categories": [["A", 0.3], ["B", 0.2]]}
        model = LocalModel(make_model(model_id(4), CLASS_FIELDS, "000001", root), settings=settings)
        leaf = {"A": 0.3, "B": 0.2}

        prediction = model.predict({})
        assert prediction.prediction == "A"
        assert prediction.probability == pytest.approx(0.6)
        assert model.predict_confidence({}) == [
            {"category": "A", "confidence": ws_confidence("A", leaf)},
            {"category": "B", "confidence": ws_confidence("B", leaf)},
        ]


# =============================================================================
# Operating points and kinds
# =============================================================================

class TestOperatingPoint:
    """Thresholded predictions."""

    def test_positive_class_over_threshold(self, iris):
        point = {"positive_class": "Iris-versicolor", "kind": "probability", "threshold": 0.01}
        prediction = iris.predict_operating(VIRGINICA, point)
        assert prediction.prediction == "Iris-versicolor"
        assert prediction.probability == pytest.approx(0.02837, abs=1e-5)

    def test_positive_class_under_threshold(self, iris):
        point = OperatingPoint(positive_class="Iris-versicolor", threshold=0.5)
        prediction = iris.predict_operating(VIRGINICA, point)
        assert prediction.prediction == "Iris-virginica"
        assert prediction.probability == pytest.approx(0.96454, abs=1e-5)

    def test_best_class_is_positive_but_under_threshold(self, iris):
        point = {"positiveClass": "Iris-virginica", "threshold": 0.99}
        assert iris.predict_operating(VIRGINICA, point).prediction == "Iris-versicolor"

    def test_confidence_kind(self, iris):
        point = {"positive_class": "Iris-versicolor", "kind": "confidence", "threshold": 0.9}
        prediction = iris.predict_operating(VIRGINICA, point)
        assert prediction.prediction == "Iris-virginica"
        assert prediction.confidence is not None

    def test_operating_point_through_predict(self, iris):
        point = {"positive_class": "Iris-versicolor", "threshold": 0.01}
        assert iris.predict(VIRGINICA, operating_point=point).prediction == "Iris-versicolor"

    def test_unknown_positive_class(self, iris):
        with pytest.raises(ConfigurationError):
            iris.predict_operating(VIRGINICA, {"positive_class": "rose", "threshold": 0.5})

    def test_threshold_out_of_range(self, iris):
        with pytest.raises(ConfigurationError):
            iris.predict_operating(VIRGINICA, {"positive_class": "Iris-setosa", "threshold": 1.5})

    def test_votes_kind_is_not_available_for_models(self, iris):
        with pytest.raises(ConfigurationError):
            iris.predict_operating(VIRGINICA, {"positive_class": "Iris-setosa", "kind": "votes", "threshold": 0.5})

    def test_regression_has_no_operating_points(self, regression):
        with pytest.raises(UnsupportedOperationError):
            regression.predict_operating({"x": 1}, {"positive_class": "1", "threshold": 0.5})


class TestOperatingKind:
    """Arg-max over the distribution of a kind."""

    def test_probability_kind(self, iris):
        prediction = iris.predict_operating_kind(VIRGINICA, "probability")
        assert prediction.prediction == "Iris-virginica"
        assert prediction.probability == pytest.approx(0.96454, abs=1e-5)
        assert len(prediction.distribution) == 3

    def test_confidence_kind(self, iris):
        prediction = iris.predict_operating_kind({"petal length": 5, "petal width": 1}, "confidence")
        assert prediction.prediction == "Iris-versicolor"
        assert prediction.confidence == ws_confidence("Iris-versicolor", {"Iris-versicolor": 49, "Iris-virginica": 5})

    def test_unknown_kind(self, iris):
        with pytest.raises(ConfigurationError):
            iris.predict_operating_kind(VIRGINICA, "votes")

    def test_regression_falls_back_to_plain_predict(self, regression):
        assert regression.predict_operating_kind({"x": 1}, "probability").prediction == 1.33333


# =============================================================================
# Boosted members
# =============================================================================

class TestBoostedModel:
    """A single boosted tree returns its raw output."""

    def test_raw_output(self, boosted_regression_models, settings):
        model = LocalModel(boosted_regression_models[0], settings=settings)
        assert model.boosting == {"weight": 1, "lambda": 1}
        assert model.predict({}).prediction == 0.2

    def test_no_per_class_measures(self, boosted_classification_models, settings):
        model = LocalModel(boosted_classification_models[0], settings=settings)
        with pytest.raises(UnsupportedOperationError):
            model.predict_probability({})
