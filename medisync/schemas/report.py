# medisync/schemas/report.py
import enum
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class ParameterStatus(str, enum.Enum):
    """Two-bucket status; the stored value is the display tag."""

    normal = "✅ Normal"
    abnormal = "⚠️ Abnormal"

    @property
    def is_normal(self) -> bool:
        return self is ParameterStatus.normal

    @property
    def icon(self) -> str:
        return "✅" if self.is_normal else "⚠️"

    @property
    def legacy(self) -> str:
        return "normal" if self.is_normal else "abnormal"


class Confidence(str, enum.Enum):
    low = "Low"
    medium = "Medium"
    high = "High"


class Provenance(str, enum.Enum):
    extracted = "extracted"
    # catalogue placeholder, never a lab finding
    reference_default = "reference_default"
    legacy = "legacy"


# ---------- Canonical rows ----------
class CanonicalParameter(BaseModel):
    parameter: str = Field(min_length=1)
    value: str = Field(min_length=1)
    unit: str = "N/A"
    report_range: Optional[str] = None
    normal_range: str = ""
    status: ParameterStatus = ParameterStatus.abnormal
    deviation: str = "N/A"
    note: str = ""
    source_snippet: str = ""
    provenance: Provenance = Provenance.extracted


class CanonicalPrediction(BaseModel):
    condition: str
    confidence: Confidence = Confidence.medium
    linked_values: List[str] = Field(default_factory=list)
    reason: str = ""
    citation: str = ""


# ---------- Legacy rows (older stored records) ----------
class LegacyParameter(BaseModel):
    test: str
    value: str
    range: Optional[str] = None
    status: str
    icon: str


class LegacyPrediction(BaseModel):
    risk_level: str
    condition: str
    recommendation: str


class NormalizedAnalysis(BaseModel):
    parameters: List[CanonicalParameter] = Field(default_factory=list)
    predictions: List[CanonicalPrediction] = Field(default_factory=list)
    patient_info: dict = Field(default_factory=dict)
    parse_mode: str = "json"


# ---------- API payloads ----------
class ReportCreate(BaseModel):
    file_name: str = Field(min_length=1, max_length=255)
    file_path: str = ""
    file_type: str = ""


class AnalyzeRequest(BaseModel):
    report_text: str = Field(min_length=1)
    report_id: str = Field(min_length=1)


class AnalyzeBatchRequest(BaseModel):
    items: List[AnalyzeRequest] = Field(min_length=1)


class AnalysisOutcome(BaseModel):
    report_id: str
    success: bool
    validation_failed: bool = False
    report_type: Optional[str] = None
    validation_status: Optional[str] = None
    validation_message: Optional[str] = None
    medical_keywords_found: List[str] = Field(default_factory=list)
    analysis_table: List[CanonicalParameter] = Field(default_factory=list)
    prediction_table: List[CanonicalPrediction] = Field(default_factory=list)
    patient_friendly_analysis: Optional[str] = None
    error: Optional[str] = None


class BatchOutcome(BaseModel):
    results: List[AnalysisOutcome]
    succeeded: int
    rejected: int
    failed: int


class ReportOut(BaseModel):
    id: str
    user_id: str
    profile_id: Optional[str] = None
    file_name: str
    file_type: str
    report_type: Optional[str] = None
    validation_status: Optional[str] = None
    validation_message: Optional[str] = None
    processing_status: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class HealthCard(BaseModel):
    parameter: str
    status: ParameterStatus
    note: str


class ReportView(ReportOut):
    parameters: List[CanonicalParameter] = Field(default_factory=list)
    predictions: List[CanonicalPrediction] = Field(default_factory=list)
    patient_info: dict = Field(default_factory=dict)
    normal_count: int = 0
    abnormal_count: int = 0
    health_summary: List[HealthCard] = Field(default_factory=list)
    patient_friendly_analysis: Optional[str] = None


class ReportStats(BaseModel):
    total: int
    completed: int
    pending: int
    failed: int
    rejected: int
