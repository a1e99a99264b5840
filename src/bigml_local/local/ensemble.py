"""
Local predictions for ensembles of decision trees.

    ensemble = LocalEnsemble("ensemble/5143a51a37203f2cf7000979")
    ensemble.predict({"petal length": 3}, method=CombinationMethod.PROBABILITY)

An ensemble can be built from an ensemble id or JSON, from a list of model
ids, or from a list of model JSONs. Member models are fetched in batches
of ``max_models`` and every prediction is combined with MultiVote.
"""

import copy
import logging
from typing import Any, Awaitable, Mapping, Optional, Sequence

from ..core.errors import LoadError, UnsupportedOperationError
from ..core.models import Prediction, PredictOptions
from ..core.resource_ids import try_resource_id
from ..multivote import MultiVote, MultiVoteList
from ..readiness import Callback
from .base import LocalResource
from .model import LocalModel

logger = logging.getLogger(__name__)


def _reference_id(reference: Any) -> Optional[str]:
    if isinstance(reference, LocalModel):
        return reference.resource_id
    resource_id = try_resource_id(reference if isinstance(reference, (str, Mapping)) else str(reference))
    return resource_id.resource if resource_id else None


class LocalEnsemble(LocalResource):
    """
    An ensemble of local models.

    Args:
        ensemble: Ensemble id/JSON/file, or a list of model ids or JSONs
        max_models: Models fetched per batch (defaults to the settings)
        **kwargs: Loading arguments of LocalResource
    """

    resource_type = "ensemble"
    operating_kinds = ("probability", "confidence", "votes")

    def __init__(self, ensemble: Any, *, max_models: Optional[int] = None, **kwargs: Any):
        self.max_models = max_models
        self.models: list[LocalModel] = []
        self.models_splits: list[list[LocalModel]] = []
        self.model_ids: list[str] = []
        self.boosting: dict[str, Any] | None = None
        self.boosting_offsets: Any = None
        self.distributions: list[Any] = []
        self.importance: list[Any] = []
        super().__init__(ensemble, **kwargs)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _resolve_local(self, reference: Any) -> Any:
        if isinstance(reference, (list, tuple)):
            return list(reference)
        return super()._resolve_local(reference)

    def _fill(self, data: Any) -> Optional[Awaitable[None]]:
        if self.max_models is None:
            self.max_models = self.settings.max_models
        if isinstance(data, list):
            references = data
        else:
            references = self._parse_ensemble(data)
        if not references:
            raise LoadError("Cannot create a local ensemble without models")
        self.model_ids = [_reference_id(ref) for ref in references]

        resolved = [
            ref if isinstance(ref, LocalModel) else self.loader.resolve_local(ref) for ref in references
        ]
        if all(item is not None for item in resolved):
            self._set_models([self._build_model(item) for item in resolved])
            return None
        logger.info(
            f"Ensemble {self.resource_id or '(list)'} metadata loaded, "
            f"fetching {len(references)} models"
        )
        self.readiness.mark_partial()
        return self._fetch_models(references)

    def _parse_ensemble(self, data: Any) -> list[Any]:
        if not isinstance(data, Mapping):
            raise LoadError(f"Cannot build a local ensemble from {type(data).__name__}")
        self._check_resource_type(data)
        resource = data.get("object", data)
        if "models" not in resource:
            raise LoadError("Cannot create the local ensemble: the resource has no models")

        fields = copy.deepcopy(resource.get("ensemble", {}).get("fields", {}))
        objective_fields = resource.get("objective_fields")
        objective_id = resource.get("objective_field") or (objective_fields[0] if objective_fields else None)
        if isinstance(objective_id, Mapping):
            objective_id = objective_id.get("id")
        if fields:
            self._set_fields(fields, objective_id)
        else:
            self.objective_id = objective_id

        self.boosting = resource.get("boosting") or None
        if self.boosting:
            if "initial_offsets" in resource:
                self.boosting_offsets = dict(resource["initial_offsets"])
            else:
                self.boosting_offsets = resource.get("initial_offset", 0)
        self.distributions = resource.get("distributions", [])
        self.importance = resource.get("importance", [])
        return list(resource["models"])

    async def _fetch_models(self, references: Sequence[Any]) -> None:
        models: list[LocalModel] = []
        for start in range(0, len(references), self.max_models):
            batch = references[start:start + self.max_models]
            remote = [ref for ref in batch if not isinstance(ref, LocalModel)]
            loaded = iter(await self.loader.load_many(remote))
            for ref in batch:
                models.append(ref if isinstance(ref, LocalModel) else self._build_model(next(loaded)))
            logger.info(
                f"Ensemble {self.resource_id or '(list)'}: loaded models "
                f"{start + 1}-{start + len(batch)} of {len(references)}"
            )
        self._set_models(models)

    def _build_model(self, resource: Any) -> LocalModel:
        if isinstance(resource, LocalModel):
            return resource
        return LocalModel(resource, loader=self.loader, settings=self.settings)

    def _set_models(self, models: list[LocalModel]) -> None:
        boosted = {model.boosting is not None for model in models}
        if len(boosted) > 1:
            raise UnsupportedOperationError(
                "Failed to build the local ensemble: boosted and non-boosted models cannot be mixed"
            )
        self.models = models
        self.models_splits = [
            models[start:start + self.max_models] for start in range(0, len(models), self.max_models)
        ]

        if not self.fields:
            fields: dict[str, dict] = {}
            for model in models:
                for field_id, field in model.fields.items():
                    fields.setdefault(field_id, field)
            self._set_fields(fields, self.objective_id or models[0].objective_id)
        if not self.class_names and not self.regression:
            self.class_names = sorted({name for model in models for name in model.class_names})
        if self.fields.get(self.objective_id, {}).get("optype") is None:
            self.regression = models[0].regression

        if self.boosting is None and models[0].boosting is not None:
            self.boosting = models[0].boosting
            self.boosting_offsets = 0 if self.regression else {}
        if self.boosting:
            self.operating_kinds = ("probability",)

    # ------------------------------------------------------------------
    # Member predictions
    # ------------------------------------------------------------------

    def _member_predictions(self, input_data: Mapping[str, Any], options: PredictOptions) -> tuple[list[dict[str, Any]], list[str]]:
        """
        Raw prediction of every member model.

        Returns:
            (predictions, fields unused by every member)
        """
        predictions = []
        unused: Optional[list[str]] = None
        for model in self.models:
            result = model.raw_predict(copy.deepcopy(dict(input_data)), options)
            predictions.append(result)
            if unused is None:
                unused = list(result["unused_fields"])
            else:
                unused = [key for key in unused if key in result["unused_fields"]]
        return predictions, unused or []

    def _boosting_votes(self, predictions: list[dict[str, Any]]) -> MultiVote:
        return MultiVote(predictions, class_names=self.class_names, boosting_offsets=self.boosting_offsets)

    def _require_classification(self, kind: str) -> None:
        if self.regression:
            raise UnsupportedOperationError(f"Per-class {kind} is only available for classifications")

    # ------------------------------------------------------------------
    # LocalResource hooks
    # ------------------------------------------------------------------

    def _predict(self, input_data: Mapping[str, Any], options: PredictOptions) -> Prediction:
        predictions, unused = self._member_predictions(input_data, options)
        unused = unused if options.add_unused_fields else None

        if self.boosting:
            combined = self._boosting_votes(predictions).combine()
            return Prediction(
                prediction=combined["prediction"],
                probability=combined.get("probability"),
                distribution=combined.get("distribution"),
                unused_fields=unused,
            )

        votes = MultiVote(predictions, class_names=self.class_names)
        combined = votes.combine(
            options.method,
            {"threshold": options.threshold, "category": options.category},
        )
        if self.regression:
            return Prediction(
                prediction=combined["prediction"],
                confidence=combined.get("confidence"),
                unused_fields=unused,
            )

        distribution = self._combined_distribution(predictions, "probability")
        return Prediction(
            prediction=combined["prediction"],
            confidence=combined.get("confidence"),
            probability=combined.get("probability"),
            distribution=distribution,
            unused_fields=unused,
        )

    def _combined_distribution(self, predictions: list[dict[str, Any]], kind: str) -> list[dict[str, Any]]:
        if kind == "votes":
            per_model = [
                [
                    {"category": category, "votes": 1 if category == prediction["prediction"] else 0}
                    for category in self.class_names
                ]
                for prediction in predictions
            ]
        else:
            key = "probabilities" if kind == "probability" else "confidences"
            per_model = [prediction[key] for prediction in predictions]
        return self._ordered(MultiVoteList(per_model).combine_to_distribution(kind))

    def _distribution_for(self, kind: str, input_data: Mapping[str, Any], options: PredictOptions) -> list[dict[str, Any]]:
        self._require_classification(kind)
        if self.boosting and kind != "probability":
            raise UnsupportedOperationError(f"Boosted ensembles cannot predict {kind}")
        predictions, _ = self._member_predictions(input_data, options)
        if self.boosting:
            return self._boosting_votes(predictions).boosting_combine()["distribution"]
        return self._combined_distribution(predictions, kind)

    def predict_votes(
        self,
        input_data: Mapping[str, Any],
        options: PredictOptions | dict[str, Any] | None = None,
        callback: Optional[Callback] = None,
        **kwargs: Any,
    ) -> Any:
        """Share of member votes per class, ``[{"category": ..., "votes": ...}]``."""
        options = PredictOptions.build(options, **kwargs)
        return self._dispatch(lambda: self._distribution_for("votes", input_data, options), callback)
