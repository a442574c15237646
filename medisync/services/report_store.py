"""Partial-update access to ``medical_reports`` keyed by report id.

Every call opens and closes its own session, so concurrent pipelines never
share one. Writes to the same id are last-write-wins.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import medisync.db.session as session_mod
from medisync.context import ProfileContext
from medisync.models.medical_report import MedicalReport, ProcessingStatus, ReportType, ValidationStatus
from medisync.schemas.report import NormalizedAnalysis, ReportCreate
from medisync.services.canonical import (
    serialize_parameters,
    serialize_predictions,
    to_legacy_parameter,
    to_legacy_prediction,
)
from medisync.utils.exceptions import PersistenceError, ReportNotFound

logger = logging.getLogger("medisync")

UPDATABLE_FIELDS = frozenset({
    "report_type",
    "validation_status",
    "validation_message",
    "processing_status",
    "detailed_analysis",
    "prediction_details",
    "analysis_results",
    "predictions",
    "patient_info",
    "patient_friendly_analysis",
    "ocr_text",
})

STATUS_FILTERS = ("completed", "pending", "failed", "rejected")


def _status_clause(status: str):
    if status == "completed":
        return (MedicalReport.processing_status == ProcessingStatus.completed.value) & (
            MedicalReport.validation_status == ValidationStatus.validated.value
        )
    if status == "pending":
        return MedicalReport.processing_status.in_(
            [ProcessingStatus.pending.value, ProcessingStatus.processing.value]
        )
    if status == "failed":
        return MedicalReport.processing_status == ProcessingStatus.failed.value
    if status == "rejected":
        return MedicalReport.validation_status == ValidationStatus.rejected.value
    raise ValueError(f"unknown status filter: {status}")


def analysis_fields(fragment: NormalizedAnalysis, raw_text: Optional[str] = None) -> Dict[str, Any]:
    """Column values for a completed analysis; legacy mirrors derive from the canonical rows."""
    fields: Dict[str, Any] = {
        "detailed_analysis": serialize_parameters(fragment.parameters),
        "prediction_details": serialize_predictions(fragment.predictions),
        "analysis_results": [to_legacy_parameter(p) for p in fragment.parameters],
        "predictions": [to_legacy_prediction(p) for p in fragment.predictions],
        "processing_status": ProcessingStatus.completed.value,
        "validation_status": ValidationStatus.validated.value,
        "report_type": ReportType.medical.value,
    }
    if fragment.patient_info:
        fields["patient_info"] = fragment.patient_info
        if raw_text is not None:
            fields["ocr_text"] = (
                f"{raw_text}\n\nExtracted Patient Info: {json.dumps(fragment.patient_info, ensure_ascii=False)}"
            )
    return fields


class ReportStore:
    def __init__(self, session_factory: Optional[Callable[[], Session]] = None) -> None:
        self._session_factory = session_factory

    def _session(self) -> Session:
        # Resolve lazily so tests can swap the module-level factory
        factory = self._session_factory or session_mod.SessionLocal
        return factory()

    # ---- reads ----
    def get(self, report_id: str, ctx: Optional[ProfileContext] = None) -> MedicalReport:
        db = self._session()
        try:
            qry = db.query(MedicalReport).filter(MedicalReport.id == report_id)
            if ctx is not None:
                qry = qry.filter(MedicalReport.user_id == ctx.user_id)
            item = qry.first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"read failed: {type(e).__name__}", report_id=report_id) from e
        finally:
            db.close()
        if item is None:
            raise ReportNotFound(report_id=report_id)
        return item

    def list(self, ctx: ProfileContext, status: Optional[str] = None) -> List[MedicalReport]:
        db = self._session()
        try:
            qry = db.query(MedicalReport).filter(MedicalReport.user_id == ctx.user_id)
            if ctx.profile_id:
                qry = qry.filter(MedicalReport.profile_id == ctx.profile_id)
            if status:
                qry = qry.filter(_status_clause(status))
            return qry.order_by(MedicalReport.created_at.desc()).all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"list failed: {type(e).__name__}") from e
        finally:
            db.close()

    def stats(self, ctx: ProfileContext) -> Dict[str, int]:
        db = self._session()
        try:
            base = db.query(func.count(MedicalReport.id)).filter(MedicalReport.user_id == ctx.user_id)
            if ctx.profile_id:
                base = base.filter(MedicalReport.profile_id == ctx.profile_id)
            counts = {"total": base.scalar() or 0}
            for status in STATUS_FILTERS:
                counts[status] = base.filter(_status_clause(status)).scalar() or 0
            return counts
        except SQLAlchemyError as e:
            raise PersistenceError(f"stats failed: {type(e).__name__}") from e
        finally:
            db.close()

    # ---- writes ----
    def create(self, ctx: ProfileContext, payload: ReportCreate) -> MedicalReport:
        db = self._session()
        try:
            item = MedicalReport(
                user_id=ctx.user_id,
                profile_id=ctx.profile_id,
                file_name=payload.file_name,
                file_path=payload.file_path,
                file_type=payload.file_type,
                processing_status=ProcessingStatus.pending.value,
            )
            db.add(item)
            db.commit()
            db.refresh(item)
            return item
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"create failed: {type(e).__name__}") from e
        finally:
            db.close()

    def update(self, report_id: str, **fields: Any) -> None:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"not updatable: {sorted(unknown)}")
        db = self._session()
        try:
            item = db.query(MedicalReport).filter(MedicalReport.id == report_id).first()
            if item is None:
                raise ReportNotFound(report_id=report_id)
            for key, value in fields.items():
                setattr(item, key, value)
            item.updated_at = datetime.now(timezone.utc)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error({"function": "report_update", "report_id": report_id, "error": type(e).__name__})
            raise PersistenceError(f"update failed: {type(e).__name__}", report_id=report_id) from e
        finally:
            db.close()
        logger.info({"function": "report_update", "report_id": report_id, "fields": sorted(fields)})

    def save_analysis(self, report_id: str, fragment: NormalizedAnalysis, raw_text: Optional[str] = None) -> None:
        self.update(report_id, **analysis_fields(fragment, raw_text))

    def mark_failed(self, report_id: str) -> None:
        self.update(report_id, processing_status=ProcessingStatus.failed.value)

    def delete(self, report_id: str, ctx: ProfileContext) -> None:
        db = self._session()
        try:
            item = (
                db.query(MedicalReport)
                .filter(MedicalReport.id == report_id, MedicalReport.user_id == ctx.user_id)
                .first()
            )
            if item is None:
                raise ReportNotFound(report_id=report_id)
            db.delete(item)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"delete failed: {type(e).__name__}", report_id=report_id) from e
        finally:
            db.close()


__all__ = ["ReportStore", "analysis_fields", "STATUS_FILTERS", "UPDATABLE_FIELDS"]
