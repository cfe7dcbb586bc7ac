from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.ab_test import ABTestStatus

# Allowed slack when checking that the traffic split sums to 100%
TRAFFIC_SPLIT_TOLERANCE = 0.01


class ABTestVariant(BaseModel):
    id: str = Field(..., min_length=1, max_length=10, description="Variant id, e.g. 'A'")
    name: str = Field(..., min_length=1, max_length=100)
    config: Dict[str, Any] = Field(default_factory=dict)
    traffic_percentage: Optional[float] = Field(None, ge=0, le=100)

    class Config:
        extra = "forbid"


class CreateABTestRequest(BaseModel):
    organization_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    hypothesis: Optional[str] = Field(None, max_length=2000)
    target_metric: str = Field(
        ..., min_length=1, max_length=100, description="Metric being optimized (e.g. signup_rate)"
    )
    variants: List[ABTestVariant] = Field(..., min_length=2, max_length=10)
    traffic_split: Dict[str, float] = Field(
        ..., description="Percentage of traffic per variant id; must sum to 100"
    )
    confidence_level: float = Field(0.95, ge=0.8, le=0.99)

    class Config:
        extra = "forbid"

    @field_validator("traffic_split")
    @classmethod
    def check_split_range(cls, v: Dict[str, float]) -> Dict[str, float]:
        for variant_id, percentage in v.items():
            if percentage < 0 or percentage > 100:
                raise ValueError(f"Traffic for variant {variant_id} must be between 0 and 100")
        return v

    @model_validator(mode="after")
    def check_variants_and_split(self) -> "CreateABTestRequest":
        variant_ids = [variant.id for variant in self.variants]
        if len(set(variant_ids)) != len(variant_ids):
            raise ValueError("Variant ids must be unique")

        unknown = set(self.traffic_split) - set(variant_ids)
        if unknown:
            raise ValueError(f"Traffic split references unknown variants: {sorted(unknown)}")

        total = sum(self.traffic_split.values())
        if abs(total - 100) > TRAFFIC_SPLIT_TOLERANCE:
            raise ValueError("Traffic split must sum to 100%")
        return self


class UpdateABTestRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    hypothesis: Optional[str] = Field(None, max_length=2000)
    status: Optional[ABTestStatus] = None
    results: Optional[Dict[str, Any]] = None
    winner_variant: Optional[str] = Field(None, max_length=10)
    statistical_significance: Optional[float] = Field(None, ge=0, le=1)

    class Config:
        extra = "forbid"


class CompleteABTestRequest(BaseModel):
    winner_variant: Optional[str] = Field(None, max_length=10)
    statistical_significance: Optional[float] = Field(None, ge=0, le=1)
    notes: Optional[str] = Field(None, max_length=2000)


class BatchDeleteRequest(BaseModel):
    organization_id: str = Field(..., min_length=1)
    test_ids: List[str] = Field(..., min_length=1)


class TrackSessionRequest(BaseModel):
    session_id: str = Field(..., min_length=1, max_length=255)
    user_id: Optional[str] = None


class TrackConversionRequest(BaseModel):
    session_id: str = Field(..., min_length=1, max_length=255)
    conversion_event: Optional[str] = Field(None, max_length=100)
    conversion_value: Optional[float] = Field(None, ge=0, description="e.g. order revenue")


class ABTestResponse(BaseModel):
    id: str
    organization_id: str
    name: str
    description: Optional[str]
    hypothesis: Optional[str]
    target_metric: str
    variants: List[ABTestVariant]
    traffic_split: Dict[str, float]
    status: ABTestStatus
    confidence_level: float
    statistical_significance: Optional[float]
    winner_variant: Optional[str]
    started_at: Optional[datetime]
    ended_at: Optional[datetime]
    results: Optional[Dict[str, Any]]
    created_by: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class VariantSessionCounts(BaseModel):
    sessions: int
    conversions: int
    conversion_rate: float


class ABTestDetailResponse(ABTestResponse):
    variant_stats: Dict[str, VariantSessionCounts] = {}
    total_sessions: int = 0


class ABTestListResponse(BaseModel):
    tests: List[ABTestResponse]
    total: int
    limit: int
    offset: int


class ABTestSessionResponse(BaseModel):
    id: str
    ab_test_id: str
    session_id: str
    user_id: Optional[str]
    variant_id: str
    converted: bool
    conversion_event: Optional[str]
    conversion_value: Optional[float]
    created_at: datetime

    class Config:
        from_attributes = True


class SessionAssignmentResponse(BaseModel):
    variant_id: str
    session: ABTestSessionResponse


class VariantStatsResponse(BaseModel):
    id: str
    name: str
    sessions: int
    conversions: int
    conversion_rate: float  # Percentage
    total_conversion_value: float
    average_conversion_value: float
    confidence_interval: List[float]  # [low, high] percentage bounds
    significance_level: float


class WinnerResponse(BaseModel):
    variant_id: str
    variant_name: str
    improvement: Optional[float]  # Null when the control did not convert
    confidence_level: float
    conversion_rate: float


class ResultsOverviewResponse(BaseModel):
    total_sessions: int
    total_conversions: int
    overall_conversion_rate: float
    test_duration_days: Optional[int]
    traffic_split: Dict[str, float]


class ABTestResultsResponse(BaseModel):
    test_id: str
    status: ABTestStatus
    statistical_significance: float
    confidence_level: float
    variants: List[VariantStatsResponse]
    winner: Optional[WinnerResponse]
    recommendations: List[str]
    overview: ResultsOverviewResponse
    raw_data: Optional[List[ABTestSessionResponse]] = None


class BatchDeleteResult(BaseModel):
    id: str
    name: str
    success: bool
    error: Optional[str] = None


class BatchDeleteSummary(BaseModel):
    total_attempted: int
    successful: int
    failed: int


class BatchDeleteResponse(BaseModel):
    results: List[BatchDeleteResult]
    summary: BatchDeleteSummary
    message: str = "Batch deletion completed"
