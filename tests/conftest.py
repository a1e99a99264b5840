"""
Pytest configuration for bigml-local tests.

Fixtures build in-memory resource JSON shaped like the API responses:
an iris-like classification tree, a small regression tree, boosted trees
and logistic regressions.
"""

import copy

import pytest

from bigml_local.config import Settings

FINISHED_STATUS = {"code": 5, "message": "The resource has been created"}

IRIS_MODEL_ID = "model/5143a51a37203f2cf7000972"
REGRESSION_MODEL_ID = "model/5143a51a37203f2cf7000980"
ENSEMBLE_ID = "ensemble/5143a51a37203f2cf7000990"
LOGISTIC_ID = "logisticregression/5143a51a37203f2cf70009a0"


def model_id(index: int) -> str:
    return f"model/5143a51a37203f2cf70010{index:02x}"


def make_model(resource_id, fields, objective_id, root, **model_extra):
    """Finished model resource JSON."""
    model = {"fields": copy.deepcopy(fields), "root": copy.deepcopy(root)}
    model.update(model_extra)
    return {
        "resource": resource_id,
        "object": {
            "resource": resource_id,
            "status": dict(FINISHED_STATUS),
            "objective_fields": [objective_id],
            "model": model,
        },
    }


# =============================================================================
# Iris classification tree
# =============================================================================

IRIS_FIELDS = {
    "000000": {"name": "sepal length", "optype": "numeric", "column_number": 0},
    "000002": {"name": "petal length", "optype": "numeric", "column_number": 2},
    "000003": {"name": "petal width", "optype": "numeric", "column_number": 3},
    "000004": {
        "name": "species",
        "optype": "categorical",
        "column_number": 4,
        "summary": {
            "categories": [
                ["Iris-setosa", 50],
                ["Iris-versicolor", 50],
                ["Iris-virginica", 50],
            ]
        },
    },
}

IRIS_ROOT = {
    "id": 0,
    "predicate": True,
    "output": "Iris-setosa",
    "count": 150,
    "confidence": 0.26289,
    "objective_summary": {
        "categories": [["Iris-setosa", 50], ["Iris-versicolor", 50], ["Iris-virginica", 50]]
    },
    "children": [
        {
            "id": 1,
            "predicate": {"operator": "<=", "field": "000002", "value": 2.45},
            "output": "Iris-setosa",
            "count": 50,
            "confidence": 0.92865,
            "objective_summary": {"categories": [["Iris-setosa", 50]]},
        },
        {
            "id": 2,
            "predicate": {"operator": ">", "field": "000002", "value": 2.45},
            "output": "Iris-versicolor",
            "count": 100,
            "confidence": 0.40383,
            "objective_summary": {
                "categories": [["Iris-versicolor", 50], ["Iris-virginica", 50]]
            },
            "children": [
                {
                    "id": 3,
                    "predicate": {"operator": "<=", "field": "000003", "value": 1.75},
                    "output": "Iris-versicolor",
                    "count": 54,
                    "confidence": 0.80182,
                    "objective_summary": {
                        "categories": [["Iris-versicolor", 49], ["Iris-virginica", 5]]
                    },
                },
                {
                    "id": 4,
                    "predicate": {"operator": ">", "field": "000003", "value": 1.75},
                    "output": "Iris-virginica",
                    "count": 46,
                    "confidence": 0.88428,
                    "objective_summary": {
                        "categories": [["Iris-versicolor", 1], ["Iris-virginica", 45]]
                    },
                },
            ],
        },
    ],
}


def stump_root(output, count, confidence, distribution=None):
    """Single-leaf tree predicting ``output``."""
    return {
        "id": 0,
        "predicate": True,
        "output": output,
        "count": count,
        "confidence": confidence,
        "objective_summary": {"categories": distribution or [[output, count]]},
    }


# =============================================================================
# Two-class stumps, used as ensemble members
# =============================================================================

CLASS_FIELDS = {
    "000000": {"name": "x", "optype": "numeric", "column_number": 0},
    "000001": {
        "name": "class",
        "optype": "categorical",
        "column_number": 1,
        "summary": {"categories": [["A", 60], ["B", 40]]},
    },
}


def stump_model(index, output, confidence, count=10):
    return make_model(model_id(index), CLASS_FIELDS, "000001", stump_root(output, count, confidence))


# =============================================================================
# Regression tree
# =============================================================================

REGRESSION_FIELDS = {
    "000000": {"name": "x", "optype": "numeric", "column_number": 0},
    "000001": {"name": "y", "optype": "numeric", "column_number": 1},
}

REGRESSION_ROOT = {
    "id": 0,
    "predicate": True,
    "output": 2.2,
    "count": 5,
    "confidence": 2.5,
    "objective_summary": {"counts": [[1, 2], [2, 1], [3, 1], [4, 1]]},
    "children": [
        {
            "id": 1,
            "predicate": {"operator": "<", "field": "000000", "value": 5},
            "output": 1.33333,
            "count": 3,
            "confidence": 1.2,
            "objective_summary": {"counts": [[1, 2], [2, 1]]},
        },
        {
            "id": 2,
            "predicate": {"operator": ">=", "field": "000000", "value": 5},
            "output": 3.5,
            "count": 2,
            "confidence": 1.4,
            "objective_summary": {"counts": [[3, 1], [4, 1]]},
        },
    ],
}


def boosted_root(output, g_sum=0.0, h_sum=1.0, count=10, children=None):
    root = {"id": 0, "predicate": True, "output": output, "count": count, "g_sum": g_sum, "h_sum": h_sum}
    if children:
        root["children"] = children
    return root


# =============================================================================
# Logistic regression
# =============================================================================

LOGISTIC_FIELDS = {
    "000000": {
        "name": "x",
        "optype": "numeric",
        "column_number": 0,
        "summary": {"mean": 0, "standard_deviation": 1},
    },
    "000001": {
        "name": "color",
        "optype": "categorical",
        "column_number": 1,
        "summary": {"categories": [["red", 5], ["blue", 5]]},
    },
    "000002": {
        "name": "label",
        "optype": "categorical",
        "column_number": 2,
        "summary": {"categories": [["yes", 6], ["no", 4]]},
    },
}


def make_logistic(coefficients, fields=None, **info_extra):
    """Finished logistic regression resource JSON."""
    info = {
        "fields": copy.deepcopy(fields or LOGISTIC_FIELDS),
        "coefficients": copy.deepcopy(coefficients),
        "bias": True,
        "c": 1,
        "eps": 1e-05,
        "normalize": False,
        "balance_fields": False,
        "regularization": "l2",
        "missing_numerics": False,
    }
    info.update(info_extra)
    return {
        "resource": LOGISTIC_ID,
        "object": {
            "resource": LOGISTIC_ID,
            "status": dict(FINISHED_STATUS),
            "objective_fields": ["000002"],
            "input_fields": ["000000", "000001"],
            "logistic_regression": info,
        },
    }


NESTED_COEFFICIENTS = [
    ["yes", [[1.0], [0.5, -0.5, 0.0], [0.0]]],
    ["no", [[-1.0], [-0.5, 0.5, 0.0], [0.0]]],
]

FLAT_COEFFICIENTS = [
    ["yes", [1.0, 0.5, -0.5, 0.0, 0.0]],
    ["no", [-1.0, -0.5, 0.5, 0.0, 0.0]],
]


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def settings():
    """Settings isolated from the environment and from any .env file."""
    return Settings(
        _env_file=None,
        username="tester",
        api_key="secret",
        poll_interval=0.001,
        max_poll_interval=0.002,
        requests_per_minute=600000,
    )


@pytest.fixture
def iris_model_json():
    return make_model(IRIS_MODEL_ID, IRIS_FIELDS, "000004", IRIS_ROOT)


@pytest.fixture
def regression_model_json():
    return make_model(REGRESSION_MODEL_ID, REGRESSION_FIELDS, "000001", REGRESSION_ROOT)


@pytest.fixture
def binary_model_json():
    """Root {A: 60, B: 40}; any input with x < 1 reaches the leaf {A: 5}."""
    root = {
        "id": 0,
        "predicate": True,
        "output": "A",
        "count": 100,
        "confidence": 0.5,
        "objective_summary": {"categories": [["A", 60], ["B", 40]]},
        "children": [
            {
                "id": 1,
                "predicate": {"operator": "<", "field": "000000", "value": 1},
                "output": "A",
                "count": 5,
                "confidence": 0.56551,
                "objective_summary": {"categories": [["A", 5]]},
            },
            {
                "id": 2,
                "predicate": {"operator": ">=", "field": "000000", "value": 1},
                "output": "A",
                "count": 95,
                "confidence": 0.48,
                "objective_summary": {"categories": [["A", 55], ["B", 40]]},
            },
        ],
    }
    return make_model(model_id(1), CLASS_FIELDS, "000001", root)


@pytest.fixture
def boosted_regression_models():
    """Three boosting rounds with raw scores 0.2, -0.1 and 0.3."""
    return [
        make_model(
            model_id(index),
            REGRESSION_FIELDS,
            "000001",
            boosted_root(output),
            boosting={"weight": 1, "lambda": 1},
        )
        for index, output in enumerate([0.2, -0.1, 0.3], start=16)
    ]


@pytest.fixture
def boosted_classification_models():
    fields = copy.deepcopy(LOGISTIC_FIELDS)
    return [
        make_model(
            model_id(32),
            fields,
            "000002",
            boosted_root(1.0),
            boosting={"weight": 1, "lambda": 1, "objective_class": "yes"},
        ),
        make_model(
            model_id(33),
            fields,
            "000002",
            boosted_root(0.0),
            boosting={"weight": 1, "lambda": 1, "objective_class": "no"},
        ),
    ]


@pytest.fixture
def logistic_json():
    return make_logistic(NESTED_COEFFICIENTS)
