"""
Request and response bodies for the classifier studio API.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SampleRequest(BaseModel):
    features: List[float] = Field(..., min_length=1, description="Feature vector")
    label: str = Field(..., min_length=1, description="Class name")


class SampleResponse(BaseModel):
    index: int
    label: str
    counts: Dict[str, int]
    warning: Optional[str] = None


class SampleRemovalResponse(BaseModel):
    removed: Any
    counts: Dict[str, int] = Field(default_factory=dict)
    warning: Optional[str] = None


class TrainRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Model name")
    overwrite: bool = Field(default=False, description="Replace a model with the same name")
    clear_samples_after: bool = Field(
        default=False, description="Clear training samples once the model is saved"
    )


class ModelResponse(BaseModel):
    id: str
    name: str
    storage_key: str
    sample_count: int
    labels: List[str]
    label_map: Dict[str, int]
    label_counts: Dict[str, int]
    created_at: datetime
    input_size: Optional[int] = None
    metrics: Dict[str, float] = Field(default_factory=dict)
    selected: bool = False


class PredictRequest(BaseModel):
    features: List[float] = Field(..., description="Feature vector")
    auxiliary_signal: Optional[Any] = Field(
        default=None, description="Signal for the configured prediction validator"
    )


class PredictionBody(BaseModel):
    label: str
    confidence: float
    probabilities: Dict[str, float]
    ambiguous: bool
    low_confidence: bool
    accepted: bool
    margin: Optional[float] = None
    entropy: Optional[float] = None


class PredictResponse(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_id: Optional[str] = None
    prediction: Optional[PredictionBody] = None


class ThresholdRequest(BaseModel):
    value: float = Field(..., ge=0.0, le=1.0)


class DebugModeRequest(BaseModel):
    enabled: bool
