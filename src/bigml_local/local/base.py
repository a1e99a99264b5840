"""
Shared behaviour of every local predictor.

LocalResource owns the load lifecycle (synchronous fill, scheduled asyncio
task, or ``asyncio.run`` when no loop is running), the readiness queue,
input filtering and the operating point / operating kind selection rules.
Subclasses provide ``_fill`` (parse the finished JSON) and the prediction
primitives.
"""

import asyncio
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterator, Mapping, Optional

from ..config import Settings, get_settings
from ..core.constants import OperatingKind
from ..core.errors import (
    BigMLLocalError,
    ConfigurationError,
    LoadError,
    UnsupportedOperationError,
    ValidationError,
)
from ..core.http import BigMLApiClient
from ..core.models import OperatingPoint, Prediction, PredictOptions
from ..core.resource_ids import try_resource_id
from ..core.utils import cast, invert_dictionary
from ..loader import CacheProtocol, ResourceLoader
from ..readiness import Callback, Readiness

logger = logging.getLogger(__name__)


class LocalResource:
    """
    Base class for objects built from a finished model-like resource.

    Args:
        resource: Finished JSON, resource id, or path to a JSON file
        api: Client for remote fetches
        cache: Cache consulted before the remote API
        storage_dir: Directory of stored ``<type>_<id>`` JSON files
        settings: Connection settings, defaults to get_settings()
        loader: Shared loader (overrides api, cache and storage_dir)
    """

    resource_type = ""
    operating_kinds: tuple[str, ...] = ()

    def __init__(
        self,
        resource: Any,
        *,
        api: Optional[BigMLApiClient] = None,
        cache: Optional[CacheProtocol] = None,
        storage_dir: Path | str | None = None,
        settings: Optional[Settings] = None,
        loader: Optional[ResourceLoader] = None,
    ):
        self.settings = settings or get_settings()
        self.loader = loader or ResourceLoader(
            api=api, storage_dir=storage_dir, cache=cache, settings=self.settings
        )
        self.readiness = Readiness()
        self.resource_id: Optional[str] = None
        self.fields: dict[str, dict] = {}
        self.inverted_fields: dict[str, str] = {}
        self.objective_id: Optional[str] = None
        self.class_names: list[str] = []
        self.regression = False
        self._load_task: Optional[asyncio.Task] = None
        self._start(resource)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.resource_id!r}, state={self.readiness.state.value})"

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _resolve_local(self, reference: Any) -> Any:
        return self.loader.resolve_local(reference)

    async def _load(self, reference: Any) -> None:
        data = await self.loader.load(reference)
        remaining = self._fill(data)
        if remaining is not None:
            await remaining

    def _fill(self, data: Any) -> Optional[Awaitable[None]]:
        """
        Parse the finished JSON.

        Returns:
            None when the object is complete, or an awaitable finishing it
        """
        raise NotImplementedError

    @contextmanager
    def _failing_on_error(self) -> Iterator[None]:
        try:
            yield
        except BigMLLocalError as e:
            self.readiness.mark_failed(e)
            raise
        except (KeyError, TypeError, ValueError) as e:
            error = LoadError(f"Malformed {self.resource_type} resource: {e!r}")
            self.readiness.mark_failed(error)
            raise error from e

    def _start(self, reference: Any) -> None:
        with self._failing_on_error():
            data = self._resolve_local(reference)
            remaining = self._load(reference) if data is None else self._fill(data)
        if remaining is None:
            self._mark_ready()
            return

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            with self._failing_on_error():
                asyncio.run(remaining)
            self._mark_ready()
            return
        self._load_task = asyncio.ensure_future(self._settle(remaining))

    async def _settle(self, remaining: Awaitable[None]) -> None:
        try:
            await remaining
        except BigMLLocalError as e:
            error = e
        except (KeyError, TypeError, ValueError) as e:
            error = LoadError(f"Malformed {self.resource_type} resource: {e!r}")
        else:
            self._mark_ready()
            return
        logger.error(f"Failed to load {self.resource_type} {self.resource_id or ''}: {error.message}")
        self.readiness.mark_failed(error)

    def _mark_ready(self) -> None:
        logger.info(f"Local {self.resource_type} {self.resource_id or '(inline)'} ready")
        self.readiness.mark_ready()

    def _check_resource_type(self, data: Mapping[str, Any]) -> None:
        resource_id = try_resource_id(data)
        if resource_id is None:
            return
        self.resource_id = resource_id.resource
        if resource_id.type != self.resource_type:
            raise LoadError(
                f"{type(self).__name__} cannot be built from a {resource_id.type} resource"
            )

    def _set_fields(self, fields: dict[str, dict], objective_id: Optional[str]) -> None:
        self.fields = fields
        self.objective_id = objective_id
        self.inverted_fields = invert_dictionary(fields)
        objective = fields.get(objective_id, {}) if objective_id else {}
        self.regression = objective.get("optype") == "numeric"
        if not self.regression:
            categories = objective.get("summary", {}).get("categories", [])
            self.class_names = sorted(category for category, _ in categories)

    @property
    def ready(self) -> bool:
        return self.readiness.is_ready

    async def wait_ready(self) -> "LocalResource":
        """Wait for the load to finish; raises its LoadError if it failed."""
        await self.readiness.wait()
        return self

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _dispatch(self, operation: Callable[[], Any], callback: Optional[Callback] = None) -> Any:
        """
        Run an operation now if ready, or queue it until the load settles.

        Returns:
            The result when ready, an asyncio.Future while loading
        """
        if self.readiness.is_ready:
            try:
                result = operation()
            except BigMLLocalError as e:
                if callback is None:
                    raise
                callback(e, None)
                return None
            if callback is not None:
                callback(None, result)
            return result
        if self.readiness.is_failed:
            raise self.readiness.error
        return self.readiness.defer(operation, callback)

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def filter_input(self, input_data: Mapping[str, Any]) -> tuple[dict[str, Any], dict[str, str], list[str]]:
        """
        Build the casted working copy of the input, keyed by field id.

        Returns:
            (casted data, field id -> caller's key, unknown keys)

        Raises:
            ValidationError: If the input is not a mapping or a value cannot
                be casted
        """
        if not isinstance(input_data, Mapping):
            raise ValidationError("Input data must be a dictionary of field values")
        working: dict[str, Any] = {}
        keys: dict[str, str] = {}
        unknown: list[str] = []
        for key, value in input_data.items():
            if value is None:
                continue
            field_id = key if key in self.fields else self.inverted_fields.get(key)
            if field_id is None or field_id == self.objective_id:
                unknown.append(key)
                continue
            working[field_id] = value
            keys[field_id] = key
        return cast(working, self.fields), keys, unknown

    @staticmethod
    def unused_fields(keys: Mapping[str, str], unknown: list[str], used_fields: set[str]) -> list[str]:
        return unknown + [key for field_id, key in keys.items() if field_id not in used_fields]

    def _ordered(self, distribution: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Sort a per-class distribution by class name."""
        order = {category: index for index, category in enumerate(self.class_names)}
        return sorted(distribution, key=lambda d: order.get(d["category"], len(order)))

    # ------------------------------------------------------------------
    # Predictions
    # ------------------------------------------------------------------

    def predict(
        self,
        input_data: Mapping[str, Any],
        options: PredictOptions | dict[str, Any] | None = None,
        callback: Optional[Callback] = None,
        **kwargs: Any,
    ) -> Any:
        """
        Predict the objective field for input_data.

        Options may be given as a PredictOptions, a dict or keyword
        arguments (``missing_strategy``, ``operating_point``, ...).

        Returns:
            Prediction when ready, an asyncio.Future resolving to it while
            loading

        Raises:
            ConfigurationError: If the options are malformed
        """
        options = PredictOptions.build(options, **kwargs)
        return self._dispatch(lambda: self._predict_with_options(input_data, options), callback)

    def predict_operating(
        self,
        input_data: Mapping[str, Any],
        operating_point: OperatingPoint | dict[str, Any],
        options: PredictOptions | dict[str, Any] | None = None,
        callback: Optional[Callback] = None,
        **kwargs: Any,
    ) -> Any:
        options = PredictOptions.build(options, operating_point=operating_point, **kwargs)
        return self._dispatch(lambda: self._predict_with_options(input_data, options), callback)

    def predict_operating_kind(
        self,
        input_data: Mapping[str, Any],
        operating_kind: OperatingKind | str,
        options: PredictOptions | dict[str, Any] | None = None,
        callback: Optional[Callback] = None,
        **kwargs: Any,
    ) -> Any:
        options = PredictOptions.build(options, operating_kind=operating_kind, **kwargs)
        return self._dispatch(lambda: self._predict_with_options(input_data, options), callback)

    def predict_probability(
        self,
        input_data: Mapping[str, Any],
        options: PredictOptions | dict[str, Any] | None = None,
        callback: Optional[Callback] = None,
        **kwargs: Any,
    ) -> Any:
        """Per-class probabilities, ``[{"category": ..., "probability": ...}]`` in class order."""
        options = PredictOptions.build(options, **kwargs)
        return self._dispatch(
            lambda: self._distribution_for(OperatingKind.probability.value, input_data, options),
            callback,
        )

    def predict_confidence(
        self,
        input_data: Mapping[str, Any],
        options: PredictOptions | dict[str, Any] | None = None,
        callback: Optional[Callback] = None,
        **kwargs: Any,
    ) -> Any:
        """Per-class confidences, ``[{"category": ..., "confidence": ...}]`` in class order."""
        options = PredictOptions.build(options, **kwargs)
        return self._dispatch(
            lambda: self._distribution_for(OperatingKind.confidence.value, input_data, options),
            callback,
        )

    def _predict_with_options(self, input_data: Mapping[str, Any], options: PredictOptions) -> Prediction:
        if options.operating_point is not None:
            return self._predict_operating(input_data, options)
        if options.operating_kind is not None:
            return self._predict_operating_kind(input_data, options)
        return self._predict(input_data, options)

    def _predict(self, input_data: Mapping[str, Any], options: PredictOptions) -> Prediction:
        raise NotImplementedError

    def _distribution_for(self, kind: str, input_data: Mapping[str, Any], options: PredictOptions) -> list[dict[str, Any]]:
        raise NotImplementedError

    def _check_kind(self, kind: str) -> None:
        if kind not in self.operating_kinds:
            raise ConfigurationError(
                f"Unsupported operating kind \"{kind}\" for a {self.resource_type}. "
                f"Choose one of: {', '.join(self.operating_kinds)}"
            )

    def _check_operating_point(self, point: OperatingPoint) -> None:
        if self.regression:
            raise UnsupportedOperationError("Operating points are only available for classifications")
        self._check_kind(point.kind.value)
        if point.positive_class not in self.class_names:
            raise ConfigurationError(
                f"The positive class must be one of the objective field classes: "
                f"{', '.join(self.class_names)}"
            )

    def _predict_operating(self, input_data: Mapping[str, Any], options: PredictOptions) -> Prediction:
        """
        Predict the positive class when its value for the point's kind is
        over the threshold, or the best of the remaining classes otherwise.
        """
        point = options.operating_point
        self._check_operating_point(point)
        kind = point.kind.value
        distribution = self._distribution_for(kind, input_data, options)
        values = {entry["category"]: entry[kind] for entry in distribution}

        if values.get(point.positive_class, 0) > point.threshold:
            chosen = point.positive_class
        else:
            ranked = sorted(distribution, key=lambda d: -d[kind])
            chosen = ranked[0]["category"]
            if chosen == point.positive_class and len(ranked) > 1:
                chosen = ranked[1]["category"]
        return self._operating_result(chosen, kind, values[chosen], distribution)

    def _predict_operating_kind(self, input_data: Mapping[str, Any], options: PredictOptions) -> Prediction:
        """Arg-max of the distribution for the requested kind."""
        kind = options.operating_kind.value
        self._check_kind(kind)
        if self.regression:
            return self._predict(input_data, options.model_copy(update={"operating_kind": None}))
        distribution = self._distribution_for(kind, input_data, options)
        best = sorted(distribution, key=lambda d: -d[kind])[0]
        return self._operating_result(best["category"], kind, best[kind], distribution)

    @staticmethod
    def _operating_result(category: str, kind: str, value: float, distribution: list[dict[str, Any]]) -> Prediction:
        measures = {kind: value} if kind in ("probability", "confidence") else {}
        return Prediction(prediction=category, distribution=distribution, **measures)
