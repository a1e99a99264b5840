"""
Local predictions for any supervised resource.

LocalSupervised inspects the resource type of the reference and delegates
to LocalModel, LocalEnsemble or LocalLogisticRegression.

    supervised = LocalSupervised("logisticregression/5143a51a37203f2cf7000981")
    supervised.predict({"petal length": 3})
"""

import logging
from typing import Any, Awaitable, Mapping, Optional

from ..core.errors import LoadError, UnsupportedOperationError
from ..core.models import Prediction, PredictOptions
from ..core.resource_ids import try_resource_id
from ..readiness import Callback
from .base import LocalResource
from .ensemble import LocalEnsemble
from .logistic import LocalLogisticRegression
from .model import LocalModel

logger = logging.getLogger(__name__)

SUPERVISED_CLASSES: dict[str, type[LocalResource]] = {
    "model": LocalModel,
    "ensemble": LocalEnsemble,
    "logisticregression": LocalLogisticRegression,
}


class LocalSupervised(LocalResource):
    """Dispatcher to the local class matching the resource type."""

    resource_type = "supervised"

    def _fill(self, data: Any) -> Optional[Awaitable[None]]:
        resource_id = try_resource_id(data)
        if resource_id is None or resource_id.type not in SUPERVISED_CLASSES:
            raise LoadError(
                "LocalSupervised needs a model, ensemble or logistic regression resource. "
                f"Only {', '.join(SUPERVISED_CLASSES)} are supported"
            )
        self.resource_id = resource_id.resource
        local_class = SUPERVISED_CLASSES[resource_id.type]
        logger.debug(f"Delegating {resource_id.resource} to {local_class.__name__}")
        self.local = local_class(data, loader=self.loader, settings=self.settings)
        self._mirror()
        if self.local.ready:
            return None
        return self._wait_local()

    async def _wait_local(self) -> None:
        await self.local.wait_ready()
        self._mirror()

    def _mirror(self) -> None:
        self.fields = self.local.fields
        self.inverted_fields = self.local.inverted_fields
        self.objective_id = self.local.objective_id
        self.class_names = self.local.class_names
        self.regression = self.local.regression
        self.operating_kinds = self.local.operating_kinds

    def _predict_with_options(self, input_data: Mapping[str, Any], options: PredictOptions) -> Prediction:
        return self.local._predict_with_options(input_data, options)

    def _distribution_for(self, kind: str, input_data: Mapping[str, Any], options: PredictOptions) -> list[dict[str, Any]]:
        return self.local._distribution_for(kind, input_data, options)

    def predict_votes(
        self,
        input_data: Mapping[str, Any],
        options: PredictOptions | dict[str, Any] | None = None,
        callback: Optional[Callback] = None,
        **kwargs: Any,
    ) -> Any:
        """Share of member votes per class; only ensembles have votes."""
        options = PredictOptions.build(options, **kwargs)
        return self._dispatch(lambda: self._votes(input_data, options), callback)

    def _votes(self, input_data: Mapping[str, Any], options: PredictOptions) -> list[dict[str, Any]]:
        if not isinstance(self.local, LocalEnsemble):
            raise UnsupportedOperationError(
                f"Votes are only available for ensembles, not for a {self.local.resource_type}"
            )
        return self.local._distribution_for("votes", input_data, options)
