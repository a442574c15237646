"""Display helpers: canonical report view, summary cards and downloads."""
from __future__ import annotations

import csv
import io
from datetime import datetime, timezone
from typing import List

from medisync.models.medical_report import MedicalReport
from medisync.schemas.report import (
    CanonicalParameter,
    CanonicalPrediction,
    HealthCard,
    Provenance,
    ReportOut,
    ReportView,
)
from medisync.services.canonical import canonicalize

APP_TITLE = "MediSync AI - Enhanced Medical Report Analysis"


def health_summary(parameters: List[CanonicalParameter]) -> List[HealthCard]:
    """One card per abnormal row that carries a note."""
    return [
        HealthCard(parameter=p.parameter, status=p.status, note=p.note)
        for p in parameters
        if not p.status.is_normal and p.note.strip()
    ]


def build_view(report: MedicalReport) -> ReportView:
    parameters, predictions = canonicalize(report)
    normal = sum(1 for p in parameters if p.status.is_normal)
    base = ReportOut.model_validate(report, from_attributes=True)
    return ReportView(
        **base.model_dump(),
        parameters=parameters,
        predictions=predictions,
        patient_info=report.patient_info or {},
        normal_count=normal,
        abnormal_count=len(parameters) - normal,
        health_summary=health_summary(parameters),
        patient_friendly_analysis=report.patient_friendly_analysis,
    )


def export_csv(report: MedicalReport) -> str:
    parameters, predictions = canonicalize(report)
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(["ANALYSIS RESULTS"])
    writer.writerow(["Parameter", "Value", "Unit", "Report Range", "Normal Range", "Status", "Deviation", "Note", "Source"])
    for p in parameters:
        writer.writerow([
            p.parameter,
            p.value,
            p.unit,
            p.report_range or "",
            p.normal_range,
            p.status.value,
            p.deviation,
            p.note,
            p.provenance.value,
        ])
    writer.writerow([])
    writer.writerow(["PREDICTIONS"])
    writer.writerow(["Condition", "Confidence", "Linked Values", "Reason", "Citation"])
    for pred in predictions:
        writer.writerow([
            pred.condition,
            pred.confidence.value,
            "; ".join(pred.linked_values),
            pred.reason,
            pred.citation,
        ])
    return buf.getvalue()


def _parameter_block(p: CanonicalParameter) -> str:
    lines = [
        f"Parameter: {p.parameter}",
        f"Value: {p.value} {p.unit}",
        f"Normal Range: {p.normal_range}",
        f"Status: {p.status.value}",
        f"Deviation: {p.deviation}",
        f"Clinical Note: {p.note}",
        f"Source Text: {p.source_snippet}",
    ]
    if p.provenance is Provenance.reference_default:
        lines.append("Placeholder: reference value, not measured in this report")
    return "\n".join(lines) + "\n"


def _prediction_block(pred: CanonicalPrediction) -> str:
    return (
        f"Condition: {pred.condition}\n"
        f"Confidence Level: {pred.confidence.value}\n"
        f"Linked Parameters: {', '.join(pred.linked_values)}\n"
        f"Mechanism: {pred.reason}\n"
        f"Evidence: {pred.citation}\n"
    )


def export_text(report: MedicalReport, now: datetime | None = None) -> str:
    parameters, predictions = canonicalize(report)
    normal = sum(1 for p in parameters if p.status.is_normal)
    now = now or datetime.now(timezone.utc)
    created = report.created_at.strftime("%Y-%m-%d") if report.created_at else ""
    parts = [
        APP_TITLE,
        "=" * len(APP_TITLE),
        "",
        f"Report: {report.file_name}",
        f"Date: {created}",
        f"Processing Status: {report.processing_status or 'completed'}",
        "",
        "DETAILED ANALYSIS RESULTS",
        "========================",
        "\n".join(_parameter_block(p) for p in parameters),
        "EVIDENCE-BASED PREDICTIONS",
        "==========================",
        "\n".join(_prediction_block(pred) for pred in predictions),
        f"Summary: {normal} Normal, {len(parameters) - normal} Abnormal parameters detected.",
        "",
        f"Generated by MediSync AI - {now.strftime('%Y-%m-%d %H:%M')} UTC",
    ]
    return "\n".join(parts) + "\n"


__all__ = ["build_view", "export_csv", "export_text", "health_summary"]
