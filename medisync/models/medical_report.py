# medisync/models/medical_report.py
import enum
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import String, DateTime, text
from sqlalchemy.orm import Mapped, mapped_column
from medisync.db.session import Base
from medisync.utils.encryption import EncryptedText, EncryptedJSON


class ProcessingStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    rejected = "rejected"


class ValidationStatus(str, enum.Enum):
    validated = "validated"
    rejected = "rejected"


class ReportType(str, enum.Enum):
    medical = "medical"
    non_medical = "non-medical"


class MedicalReport(Base):
    __tablename__ = "medical_reports"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    profile_id: Mapped[Optional[str]] = mapped_column(String(36), index=True, nullable=True)

    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    file_type: Mapped[str] = mapped_column(String(120), nullable=False, default="")

    # Plain columns so dashboards can filter on them
    report_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    validation_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True, index=True)
    validation_message: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    processing_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=ProcessingStatus.pending.value, index=True
    )

    ocr_text: Mapped[Optional[str]] = mapped_column(EncryptedText, nullable=True)
    detailed_analysis: Mapped[Optional[list]] = mapped_column(EncryptedJSON, nullable=True)
    prediction_details: Mapped[Optional[list]] = mapped_column(EncryptedJSON, nullable=True)
    # legacy mirrors, always derived from the two columns above on write
    analysis_results: Mapped[Optional[list]] = mapped_column(EncryptedJSON, nullable=True)
    predictions: Mapped[Optional[list]] = mapped_column(EncryptedJSON, nullable=True)
    patient_info: Mapped[Optional[dict]] = mapped_column(EncryptedJSON, nullable=True)
    patient_friendly_analysis: Mapped[Optional[str]] = mapped_column(EncryptedText, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        server_onupdate=text("CURRENT_TIMESTAMP"),
    )
