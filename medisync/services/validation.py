"""Decide whether an uploaded document is a medical report before analysing it.

The model is asked first; when its answer is unusable (or the call fails)
the decision falls back to counting medical keywords in the text. ``classify``
never raises.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List

from medisync.schemas.report import Confidence
from medisync.services.canonical import as_text, coerce_confidence
from medisync.services.gemini import CLASSIFICATION_OPTIONS, GatewayError, ModelGateway
from medisync.services.normalizer import parse_json_object
from medisync.services.prompts import build_classification_prompt

logger = logging.getLogger("medisync")

MEDICAL_KEYWORDS = (
    "hemoglobin", "glucose", "cholesterol", "creatinine", "blood", "test", "doctor",
    "patient", "hospital", "clinic", "lab", "result", "normal", "range", "mg/dl",
    "mmol/l", "g/dl", "wbc", "rbc", "platelet", "hematocrit", "mri", "ct", "xray",
    "ultrasound",
)
MIN_KEYWORDS = 3
HIGH_CONFIDENCE_KEYWORDS = 5


@dataclass
class Classification:
    is_medical: bool
    confidence: Confidence
    keywords_found: List[str] = field(default_factory=list)
    reason: str = ""
    source: str = "model"

    @property
    def report_type(self) -> str:
        return "medical" if self.is_medical else "non-medical"

    @property
    def validation_status(self) -> str:
        return "validated" if self.is_medical else "rejected"

    @property
    def message(self) -> str:
        if self.is_medical:
            return f"Medical report validated with {self.confidence.value.lower()} confidence"
        return f"Non-medical document detected: {self.reason}"


def classify_by_keywords(raw_text: str) -> Classification:
    text = (raw_text or "").lower()
    found = [kw for kw in MEDICAL_KEYWORDS if kw in text]
    count = len(found)
    if count >= HIGH_CONFIDENCE_KEYWORDS:
        confidence = Confidence.high
    elif count >= MIN_KEYWORDS:
        confidence = Confidence.medium
    else:
        confidence = Confidence.low
    is_medical = count >= MIN_KEYWORDS
    return Classification(
        is_medical=is_medical,
        confidence=confidence,
        keywords_found=found,
        reason=f"Found {count} medical keywords" if is_medical else "Insufficient medical terminology detected",
        source="keywords",
    )


def _as_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    text = as_text(value).lower()
    if text in ("true", "yes", "1"):
        return True
    if text in ("false", "no", "0"):
        return False
    return None


def _from_model(output: str) -> Classification | None:
    data = parse_json_object(output)
    if data is None:
        return None
    is_medical = _as_bool(data.get("is_medical"))
    if is_medical is None:
        return None
    raw_keywords = data.get("medical_keywords_found")
    keywords = [as_text(k) for k in raw_keywords if as_text(k)] if isinstance(raw_keywords, list) else []
    reason = as_text(data.get("reason")) or (
        "Classified as a medical report" if is_medical else "Document does not look like a medical report"
    )
    return Classification(
        is_medical=is_medical,
        confidence=coerce_confidence(data.get("confidence")),
        keywords_found=keywords,
        reason=reason,
        source="model",
    )


async def classify(raw_text: str, gateway: ModelGateway) -> Classification:
    try:
        output = await gateway.generate(build_classification_prompt(raw_text), CLASSIFICATION_OPTIONS)
    except GatewayError as e:
        logger.warning({"function": "classify", "status": "gateway_error", "error": str(e)})
        output = ""

    result = _from_model(output) if output else None
    if result is None:
        result = classify_by_keywords(raw_text)

    logger.info({
        "function": "classify",
        "source": result.source,
        "is_medical": result.is_medical,
        "confidence": result.confidence.value,
        "keyword_count": len(result.keywords_found),
    })
    return result


__all__ = ["Classification", "MEDICAL_KEYWORDS", "classify", "classify_by_keywords"]
