"""Coalesce model output, stored records and legacy rows into the canonical shape.

This is the single place that knows the alternate field names. The
normalizer uses it on fresh model output and the presentation layer uses it
on whatever a stored record holds, so both agree on what a row means.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from medisync.schemas.report import (
    CanonicalParameter,
    CanonicalPrediction,
    Confidence,
    LegacyParameter,
    LegacyPrediction,
    ParameterStatus,
    Provenance,
)

logger = logging.getLogger("medisync")

NA = "N/A"
LEGACY_ABNORMAL_NOTE = "Please consult your healthcare provider"
LEGACY_CITATION = "Clinical guidelines and standard medical practice"


def as_text(value: Any) -> str:
    """Model values arrive as str, int, float or null; keep them as text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (list, tuple)):
        return ", ".join(as_text(v) for v in value if as_text(v))
    if isinstance(value, dict):
        return ""
    return str(value).strip()


def first_text(item: Mapping[str, Any], *keys: str) -> str:
    for key in keys:
        text = as_text(item.get(key))
        if text:
            return text
    return ""


def coerce_status(raw: Any) -> ParameterStatus:
    """Collapse any status text into the two buckets.

    Only an explicit normal marker (the check tag or the word itself) is
    Normal; High, Low, Borderline and anything unrecognised are Abnormal.
    """
    if isinstance(raw, ParameterStatus):
        return raw
    text = as_text(raw)
    if "✅" in text or text.lower() == "normal":
        return ParameterStatus.normal
    return ParameterStatus.abnormal


def coerce_confidence(raw: Any) -> Confidence:
    if isinstance(raw, Confidence):
        return raw
    text = as_text(raw).lower()
    if "high" in text:
        return Confidence.high
    if "low" in text:
        return Confidence.low
    return Confidence.medium


def default_snippet(name: str, value: str, unit: str = "") -> str:
    unit_part = f" {unit}" if unit and unit != NA else ""
    return f"{name}: {value}{unit_part}"


def _is_legacy_parameter(item: Mapping[str, Any]) -> bool:
    return "test" in item and not any(k in item for k in ("parameter", "test_name", "name"))


def _is_legacy_prediction(item: Mapping[str, Any]) -> bool:
    return ("risk_level" in item or "recommendation" in item) and "confidence" not in item


def _from_legacy_parameter(item: Mapping[str, Any]) -> Optional[CanonicalParameter]:
    legacy = LegacyParameter(
        test=as_text(item.get("test")),
        value=as_text(item.get("value")),
        range=as_text(item.get("range")) or None,
        status=as_text(item.get("status")),
        icon=as_text(item.get("icon")),
    )
    status = coerce_status(legacy.status)
    try:
        return CanonicalParameter(
            parameter=legacy.test,
            value=legacy.value,
            unit=NA,
            report_range=legacy.range,
            normal_range=legacy.range or "",
            status=status,
            deviation=NA,
            note="" if status.is_normal else LEGACY_ABNORMAL_NOTE,
            source_snippet=default_snippet(legacy.test, legacy.value),
            provenance=Provenance.legacy,
        )
    except ValidationError:
        return None


def coerce_parameter(
    item: Any,
    *,
    status: Optional[ParameterStatus] = None,
    default_deviation: str = NA,
    default_note: str = "",
    provenance: Optional[Provenance] = None,
) -> Optional[CanonicalParameter]:
    """Map one raw row (model, canonical or legacy naming) to a CanonicalParameter.

    Returns None for rows without a name or value.
    """
    if isinstance(item, CanonicalParameter):
        return item
    if not isinstance(item, Mapping):
        return None
    if _is_legacy_parameter(item):
        row = _from_legacy_parameter(item)
        if row is not None and status is not None:
            row = row.model_copy(update={"status": status})
        return row

    name = first_text(item, "parameter", "test_name", "name")
    value = first_text(item, "value", "result_value", "result")
    if not name or not value:
        return None
    unit = first_text(item, "unit") or NA
    report_range = first_text(item, "report_range", "reference_range") or None
    normal_range = first_text(item, "normal_range") or report_range or ""
    if provenance is None:
        stored = as_text(item.get("provenance"))
        provenance = Provenance(stored) if stored in Provenance._value2member_map_ else Provenance.extracted
    return CanonicalParameter(
        parameter=name,
        value=value,
        unit=unit,
        report_range=report_range,
        normal_range=normal_range,
        status=status if status is not None else coerce_status(item.get("status")),
        deviation=first_text(item, "deviation") or default_deviation,
        note=first_text(item, "note", "clinical_significance") or default_note,
        source_snippet=first_text(item, "source_snippet", "ocr_snippet") or default_snippet(name, value, unit),
        provenance=provenance,
    )


def _linked_values(item: Mapping[str, Any], condition: str, reason: str) -> List[str]:
    for key in ("linked_values", "risk_factors"):
        raw = item.get(key)
        if isinstance(raw, (list, tuple)):
            values = [as_text(v) for v in raw if as_text(v)]
            if values:
                return values
        elif as_text(raw):
            return [as_text(raw)]
    return [reason or condition]


def _from_legacy_prediction(item: Mapping[str, Any]) -> Optional[CanonicalPrediction]:
    legacy = LegacyPrediction(
        risk_level=as_text(item.get("risk_level")),
        condition=as_text(item.get("condition")),
        recommendation=as_text(item.get("recommendation")),
    )
    if not legacy.condition:
        return None
    return CanonicalPrediction(
        condition=legacy.condition,
        confidence=coerce_confidence(legacy.risk_level),
        linked_values=[legacy.condition],
        reason=legacy.recommendation,
        citation=LEGACY_CITATION,
    )


def coerce_prediction(item: Any) -> Optional[CanonicalPrediction]:
    if isinstance(item, CanonicalPrediction):
        return item
    if not isinstance(item, Mapping):
        return None
    if _is_legacy_prediction(item):
        return _from_legacy_prediction(item)
    condition = first_text(item, "condition", "possible_condition")
    if not condition:
        return None
    reason = first_text(item, "reason", "reason_one_line")
    return CanonicalPrediction(
        condition=condition,
        confidence=coerce_confidence(item.get("confidence")),
        linked_values=_linked_values(item, condition, reason),
        reason=reason,
        citation=first_text(item, "citation", "proof_citation", "evidence"),
    )


def coerce_parameters(items: Any, **kwargs: Any) -> List[CanonicalParameter]:
    if not isinstance(items, list):
        return []
    rows: List[CanonicalParameter] = []
    for item in items:
        row = coerce_parameter(item, **kwargs)
        if row is None:
            logger.info({"function": "coerce_parameter", "status": "dropped_row"})
            continue
        rows.append(row)
    return rows


def coerce_predictions(items: Any) -> List[CanonicalPrediction]:
    if not isinstance(items, list):
        return []
    return [p for p in (coerce_prediction(item) for item in items) if p is not None]


def _field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def canonicalize(record: Any) -> Tuple[List[CanonicalParameter], List[CanonicalPrediction]]:
    """Canonical rows for a stored record, preferring the enhanced columns.

    ``record`` may be an ORM row or a plain mapping. Legacy ``analysis_results``
    / ``predictions`` are only read when the enhanced column is empty.
    """
    parameters = coerce_parameters(_field(record, "detailed_analysis"))
    if not parameters:
        parameters = coerce_parameters(_field(record, "analysis_results"))
    predictions = coerce_predictions(_field(record, "prediction_details"))
    if not predictions:
        predictions = coerce_predictions(_field(record, "predictions"))
    return parameters, predictions


def to_legacy_parameter(param: CanonicalParameter) -> Dict[str, Any]:
    return LegacyParameter(
        test=param.parameter,
        value=param.value,
        range=param.report_range or param.normal_range or None,
        status=param.status.legacy,
        icon=param.status.icon,
    ).model_dump()


def to_legacy_prediction(pred: CanonicalPrediction) -> Dict[str, Any]:
    return LegacyPrediction(
        risk_level=pred.confidence.value,
        condition=pred.condition,
        recommendation=pred.reason or pred.citation,
    ).model_dump()


def serialize_parameters(rows: Iterable[CanonicalParameter]) -> List[Dict[str, Any]]:
    return [row.model_dump(mode="json") for row in rows]


def serialize_predictions(rows: Iterable[CanonicalPrediction]) -> List[Dict[str, Any]]:
    return [row.model_dump(mode="json") for row in rows]


__all__ = [
    "as_text",
    "coerce_status",
    "coerce_confidence",
    "coerce_parameter",
    "coerce_prediction",
    "coerce_parameters",
    "coerce_predictions",
    "canonicalize",
    "to_legacy_parameter",
    "to_legacy_prediction",
    "serialize_parameters",
    "serialize_predictions",
]
