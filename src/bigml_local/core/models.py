"""
Pydantic models for predictions and prediction options.

These models are used for:
- Collapsing the optional prediction arguments into one options object
- Validating operating points before any computation happens
- Returning immutable prediction results
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .constants import CombinationMethod, MissingStrategy, OperatingKind
from .errors import ConfigurationError


class OperatingPoint(BaseModel):
    """Threshold applied to one positive class instead of the arg-max rule."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    positive_class: str = Field(alias="positiveClass")
    kind: OperatingKind = OperatingKind.probability
    threshold: float = Field(ge=0, le=1)


class PredictOptions(BaseModel):
    """Every optional knob of the predict family, each with its default."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    missing_strategy: MissingStrategy = Field(
        default=MissingStrategy.LAST_PREDICTION,
        alias="missingStrategy",
    )
    use_median: bool = Field(default=False, alias="median")
    add_unused_fields: bool = Field(default=False, alias="addUnusedFields")
    operating_point: Optional[OperatingPoint] = Field(default=None, alias="operatingPoint")
    operating_kind: Optional[OperatingKind] = Field(default=None, alias="operatingKind")
    method: CombinationMethod = CombinationMethod.PLURALITY
    # THRESHOLD combination: votes needed for `category` to win
    threshold: Optional[int] = None
    category: Optional[str] = None

    @classmethod
    def build(cls, options: PredictOptions | dict[str, Any] | None = None, **kwargs: Any) -> PredictOptions:
        """
        Build options from an instance, a dict and/or keyword overrides.

        Raises:
            ConfigurationError: If any option is malformed
        """
        if isinstance(options, PredictOptions):
            if not kwargs:
                return options
            options = options.model_dump()
        values = {**(options or {}), **kwargs}
        try:
            return cls.model_validate(values)
        except PydanticValidationError as e:
            raise ConfigurationError(f"Wrong prediction options: {e}") from e


class Prediction(BaseModel):
    """Immutable prediction result."""

    model_config = ConfigDict(frozen=True)

    prediction: Any
    probability: Optional[float] = None
    confidence: Optional[float] = None
    distribution: Optional[list[Any]] = None
    count: Optional[float] = None
    path: Optional[list[str]] = None
    median: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    unused_fields: Optional[list[str]] = None

    def to_dict(self) -> dict[str, Any]:
        """Plain dict without the keys that were not computed."""
        return self.model_dump(exclude_none=True)
