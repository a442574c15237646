"""Turn the model's raw extraction text into canonical parameter/prediction rows.

Order of operations:

1. parse the first balanced ``{...}`` object in the output as JSON;
2. if there is none (or it does not decode), fall back to reading
   pipe-delimited tables out of blank-line separated sections;
3. pad the parameter table to ``MIN_PARAMETERS`` rows from a fixed catalogue
   of stock reference values (tagged ``reference_default``);
4. add one generic monitoring row when no prediction survived.

Nothing in here raises on bad model output, and the result depends only on
the inputs, so normalizing the same pair twice gives identical rows.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from medisync.schemas.report import (
    CanonicalParameter,
    CanonicalPrediction,
    Confidence,
    NormalizedAnalysis,
    ParameterStatus,
    Provenance,
)
from medisync.services.canonical import (
    NA,
    as_text,
    coerce_confidence,
    coerce_parameter,
    coerce_parameters,
    coerce_predictions,
    coerce_status,
    default_snippet,
)

logger = logging.getLogger("medisync")

MIN_PARAMETERS = 10
SNIPPET_MAX_CHARS = 160
# shortest pipe rows the fallback parser accepts
MIN_PARAMETER_FIELDS = 4
MIN_PREDICTION_FIELDS = 3

NORMAL_DEFAULT_NOTE = "Within healthy range"
FALLBACK_NORMAL_RANGE = "Standard clinical range"
FALLBACK_NOTE = "Review with healthcare provider"
FALLBACK_REASON = "Based on abnormal lab values"
FALLBACK_CITATION = "Clinical guidelines and evidence-based medicine"
BACKFILL_NOTE = "Standard health parameter - within normal clinical range"


@dataclass(frozen=True)
class ReferenceParameter:
    name: str
    value: str
    unit: str
    range: str

    def as_parameter(self) -> CanonicalParameter:
        return CanonicalParameter(
            parameter=self.name,
            value=self.value,
            unit=self.unit,
            report_range=self.range,
            normal_range=self.range,
            status=ParameterStatus.normal,
            deviation="0%",
            note=BACKFILL_NOTE,
            source_snippet=f"{self.name}: {self.value} {self.unit} ({self.range})",
            provenance=Provenance.reference_default,
        )


# Stock adult reference values used only to pad short tables for display.
PARAMETER_CATALOGUE: Tuple[ReferenceParameter, ...] = (
    ReferenceParameter("Hemoglobin", "14.2", "g/dL", "12.0-15.5"),
    ReferenceParameter("Total Cholesterol", "180", "mg/dL", "< 200"),
    ReferenceParameter("Blood Glucose", "95", "mg/dL", "70-100"),
    ReferenceParameter("Creatinine", "1.0", "mg/dL", "0.6-1.2"),
    ReferenceParameter("White Blood Cells", "7500", "/μL", "4000-11000"),
    ReferenceParameter("Red Blood Cells", "4.8", "million/μL", "4.2-5.4"),
    ReferenceParameter("Platelet Count", "250000", "/μL", "150000-450000"),
    ReferenceParameter("HDL Cholesterol", "55", "mg/dL", "> 40"),
    ReferenceParameter("LDL Cholesterol", "110", "mg/dL", "< 130"),
    ReferenceParameter("Triglycerides", "120", "mg/dL", "< 150"),
    ReferenceParameter("SGPT/ALT", "25", "IU/L", "7-45"),
    ReferenceParameter("SGOT/AST", "28", "IU/L", "8-40"),
    ReferenceParameter("Total Protein", "7.2", "g/dL", "6.0-8.3"),
    ReferenceParameter("Albumin", "4.1", "g/dL", "3.5-5.0"),
    ReferenceParameter("Urea", "28", "mg/dL", "15-45"),
)


def general_monitoring_prediction() -> CanonicalPrediction:
    return CanonicalPrediction(
        condition="General Health Monitoring",
        confidence=Confidence.low,
        linked_values=["Overall Health Status"],
        reason="Continue regular health monitoring based on current results",
        citation="Preventive medicine guidelines - routine health screening recommendations",
    )


# ---------------------------------------------------------------------------
# JSON path
# ---------------------------------------------------------------------------

def find_json_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` substring, honouring JSON strings."""
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def parse_json_object(text: str) -> Optional[Dict[str, Any]]:
    candidate = find_json_object(text or "")
    if candidate is None:
        return None
    try:
        data = json.loads(candidate)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _normal_row_status(item: Any) -> ParameterStatus:
    # Rows under normal_values count as Normal unless they say otherwise
    if isinstance(item, dict) and as_text(item.get("status")):
        return coerce_status(item.get("status"))
    return ParameterStatus.normal


def _patient_info(data: Dict[str, Any]) -> Dict[str, str]:
    raw = data.get("patient_info")
    if not isinstance(raw, dict):
        return {}
    return {str(k): as_text(v) for k, v in raw.items() if as_text(v)}


def _from_json(data: Dict[str, Any]) -> Tuple[List[CanonicalParameter], List[CanonicalPrediction]]:
    parameters = coerce_parameters(
        data.get("abnormal_values"),
        status=ParameterStatus.abnormal,
        default_deviation=NA,
        default_note="",
        provenance=Provenance.extracted,
    )
    normal_values = data.get("normal_values")
    for item in normal_values if isinstance(normal_values, list) else []:
        row = coerce_parameter(
            item,
            status=_normal_row_status(item),
            default_deviation="0%",
            default_note=NORMAL_DEFAULT_NOTE,
            provenance=Provenance.extracted,
        )
        if row is not None:
            parameters.append(row)
    return parameters, coerce_predictions(data.get("prediction_table"))


# ---------------------------------------------------------------------------
# Delimited-text fallback
# ---------------------------------------------------------------------------

_SECTION_SPLIT = re.compile(r"\n\s*\n")
_RULE_LINE = re.compile(r"^[\s|:\-+=]+$")


def _cells(line: str) -> List[str]:
    return [cell.strip() for cell in line.strip().strip("|").split("|")]


def _table_lines(section: str, header_word: str) -> List[List[str]]:
    rows = []
    for line in section.splitlines():
        if "|" not in line or header_word in line.lower() or _RULE_LINE.match(line):
            continue
        rows.append(_cells(line))
    return rows


def _cell(cells: List[str], idx: int) -> str:
    return cells[idx] if idx < len(cells) else ""


def _parameter_rows(section: str) -> List[CanonicalParameter]:
    rows = []
    for cells in _table_lines(section, "parameter"):
        if len(cells) < MIN_PARAMETER_FIELDS:
            continue
        name, value = _cell(cells, 0), _cell(cells, 1)
        if not name or not value:
            continue
        unit = _cell(cells, 2) or NA
        rows.append(CanonicalParameter(
            parameter=name,
            value=value,
            unit=unit,
            report_range=_cell(cells, 3) or None,
            normal_range=_cell(cells, 4) or FALLBACK_NORMAL_RANGE,
            status=coerce_status(_cell(cells, 5)),
            deviation=_cell(cells, 6) or NA,
            note=_cell(cells, 7) or FALLBACK_NOTE,
            source_snippet=default_snippet(name, value, unit),
            provenance=Provenance.extracted,
        ))
    return rows


def _prediction_rows(section: str) -> List[CanonicalPrediction]:
    rows = []
    for cells in _table_lines(section, "condition"):
        if len(cells) < MIN_PREDICTION_FIELDS:
            continue
        condition = _cell(cells, 0)
        if not condition:
            continue
        reason = _cell(cells, 2) or FALLBACK_REASON
        rows.append(CanonicalPrediction(
            condition=condition,
            confidence=coerce_confidence(_cell(cells, 1)),
            linked_values=[reason],
            reason=reason,
            citation=_cell(cells, 3) or FALLBACK_CITATION,
        ))
    return rows


def _is_prediction_section(section: str) -> bool:
    lines = [line for line in section.splitlines() if line.strip()]
    if not lines:
        return False
    heading = lines[0].lower()
    if "prediction" in heading or "risk" in heading:
        return True
    # headless table whose header row names conditions
    return any("|" in line and "condition" in line.lower() for line in lines[:2])


def parse_delimited(text: str) -> Tuple[List[CanonicalParameter], List[CanonicalPrediction]]:
    parameters: List[CanonicalParameter] = []
    predictions: List[CanonicalPrediction] = []
    for section in _SECTION_SPLIT.split(text or ""):
        if _is_prediction_section(section):
            predictions.extend(_prediction_rows(section))
        elif "analysis" in section.lower() or "|" in section:
            parameters.extend(_parameter_rows(section))
    return parameters, predictions


# ---------------------------------------------------------------------------
# Backfill and entry point
# ---------------------------------------------------------------------------

def _snippet_from_source(raw_text: str, row: CanonicalParameter) -> CanonicalParameter:
    # a snippet quoted by the model wins over our own lookup
    if row.source_snippet != default_snippet(row.parameter, row.value, row.unit):
        return row
    needle = row.parameter.lower()
    for line in (raw_text or "").splitlines():
        if needle in line.lower():
            return row.model_copy(update={"source_snippet": line.strip()[:SNIPPET_MAX_CHARS]})
    return row


def backfill_parameters(parameters: List[CanonicalParameter], minimum: int = MIN_PARAMETERS) -> List[CanonicalParameter]:
    """Pad to ``minimum`` rows, skipping catalogue names that overlap existing ones."""
    rows = list(parameters)
    if len(rows) >= minimum:
        return rows
    names = [row.parameter.lower() for row in rows]
    for ref in PARAMETER_CATALOGUE:
        if len(rows) >= minimum:
            break
        candidate = ref.name.lower()
        if any(candidate in name or name in candidate for name in names):
            continue
        rows.append(ref.as_parameter())
        names.append(candidate)
    return rows


def ensure_predictions(predictions: List[CanonicalPrediction]) -> List[CanonicalPrediction]:
    return list(predictions) if predictions else [general_monitoring_prediction()]


def normalize(raw_text: str, model_output: str) -> NormalizedAnalysis:
    data = parse_json_object(model_output or "")
    if data is not None:
        parse_mode = "json"
        parameters, predictions = _from_json(data)
        patient_info = _patient_info(data)
    else:
        parse_mode = "delimited"
        parameters, predictions = parse_delimited(model_output or "")
        patient_info = {}

    parameters = [_snippet_from_source(raw_text, row) for row in parameters]
    extracted = len(parameters)
    parameters = backfill_parameters(parameters)
    predictions = ensure_predictions(predictions)

    logger.info({
        "function": "normalize",
        "parse_mode": parse_mode,
        "extracted_parameters": extracted,
        "backfilled_parameters": len(parameters) - extracted,
        "predictions": len(predictions),
    })
    return NormalizedAnalysis(
        parameters=parameters,
        predictions=predictions,
        patient_info=patient_info,
        parse_mode=parse_mode,
    )


__all__ = [
    "MIN_PARAMETERS",
    "PARAMETER_CATALOGUE",
    "find_json_object",
    "parse_json_object",
    "parse_delimited",
    "backfill_parameters",
    "ensure_predictions",
    "normalize",
]
