from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import pandas as pd
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ModelStatus(str, Enum):
    CREATED = "Created"
    QUEUED = "Queued"
    TRAINING = "Training"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"
    ABORTED = "Aborted"


# statuses after which the service will not change the model any further
TERMINAL_STATUSES = frozenset(
    s.value for s in (ModelStatus.COMPLETED, ModelStatus.FAILED, ModelStatus.ABORTED)
)


class TrainingParameters(BaseModel):
    """SAR training request. Unknown keys pass through to the service untouched."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    description: Optional[str] = None
    blob_container_name: Optional[str] = None
    usage_relative_path: Optional[str] = None
    catalog_file_relative_path: Optional[str] = None
    evaluation_usage_relative_path: Optional[str] = None
    support_cold_item_placement: Optional[bool] = None
    enable_cold_to_cold_recommendations: Optional[bool] = None
    enable_user_affinity: Optional[bool] = None
    enable_user_to_item_recommendations: Optional[bool] = None
    allow_seed_items_in_recommendations: Optional[bool] = None
    enable_backfilling: Optional[bool] = None
    decay_period_in_days: Optional[int] = None
    similarity_function: Optional[str] = None
    cooccurrence_unit: Optional[str] = None
    similarity_threshold: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        """Wire body: camelCase keys, unset entries omitted rather than sent as null."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ModelSnapshot(BaseModel):
    """Immutable view of a model descriptor as last returned by the service."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    description: Optional[str] = None
    creation_time: Optional[datetime] = Field(None, alias="creationTime")
    status: Optional[str] = Field(None, alias="modelStatus")
    status_message: Optional[str] = Field(None, alias="modelStatusMessage")
    parameters: Dict[str, Any] = Field(default_factory=dict)
    statistics: Optional[Dict[str, Any]] = None

    @field_validator("creation_time", mode="before")
    @classmethod
    def _parse_creation_time(cls, value):
        # service timestamps carry 7 fractional digits, which only pandas parses reliably
        if value is None or isinstance(value, datetime):
            return value
        return pd.to_datetime(value, utc=True).floor("us").to_pydatetime()

    @field_validator("parameters", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return value or {}

    @property
    def is_completed(self) -> bool:
        return self.status == ModelStatus.COMPLETED.value

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def summary(self) -> Dict[str, Any]:
        """
        Flatten the statistics record into plain data.

        Returns a dict with ``training`` counts/durations and, when the model
        was trained with an evaluation set, ``evaluation``, ``diversity``,
        ``percentile_buckets`` and ``precision`` entries; the last two are
        DataFrames. Models without statistics yield only the header fields.
        """
        out: Dict[str, Any] = {
            "description": self.description,
            "status": self.status,
            "creation_time": self.creation_time,
            "parameters": dict(self.parameters),
        }
        stats = self.statistics
        if not stats:
            return out

        parsing = stats.get("usageEventsParsing") or {}
        out["training"] = {
            "training_duration": stats.get("trainingDuration"),
            "total_duration": stats.get("totalDuration"),
            "included_events": parsing.get("successfulLinesCount"),
            "total_events": parsing.get("totalLinesCount"),
            "item_count": stats.get("numberOfUsageItems"),
            "user_count": stats.get("numberOfUsers"),
        }

        ev = stats.get("evaluation")
        if ev:
            ev_parsing = ev.get("usageEventsParsing") or {}
            metrics = ev.get("metrics") or {}
            diversity = metrics.get("diversityMetrics") or {}
            out["evaluation"] = {
                "duration": ev.get("duration"),
                "total_events": ev_parsing.get("totalLinesCount"),
                "included_events": ev_parsing.get("successfulLinesCount"),
            }
            out["diversity"] = {
                "total_items_recommended": diversity.get("totalItemsRecommended"),
                "unique_items_recommended": diversity.get("uniqueItemsRecommended"),
                "unique_items_in_train_set": diversity.get("uniqueItemsInTrainSet"),
            }
            out["percentile_buckets"] = pd.DataFrame(diversity.get("percentileBuckets") or [])
            out["precision"] = pd.DataFrame(metrics.get("precisionMetrics") or [])
        return out


class TransactionEvent(BaseModel):
    """One auxiliary usage event sent alongside a user recommendation request.

    Extra columns of the caller's transaction table are passed through as-is.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    item_id: str = Field(alias="itemId")
    event_type: Optional[str] = Field(None, alias="eventType")
    weight: Optional[float] = None
    timestamp: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ScoredItem(BaseModel):
    item_id: str = Field(validation_alias=AliasChoices("recommendedItemId", "itemId", "item_id"))
    score: float


class RecommendationRow(BaseModel):
    """Recommendations for one subject in service rank order."""

    subject_id: Optional[str] = None
    recommendations: List[ScoredItem] = Field(default_factory=list)
