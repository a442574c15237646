from medisync.schemas.report import Confidence, ParameterStatus, Provenance
from medisync.services.canonical import (
    canonicalize,
    coerce_confidence,
    coerce_parameter,
    coerce_prediction,
    coerce_status,
    serialize_parameters,
    to_legacy_parameter,
    to_legacy_prediction,
)


def test_status_collapses_to_two_buckets():
    assert coerce_status("✅ Normal") is ParameterStatus.normal
    assert coerce_status("normal") is ParameterStatus.normal
    for raw in ("High", "Low", "Borderline", "⚠️ Abnormal", "", None, "Normalish"):
        assert coerce_status(raw) is ParameterStatus.abnormal


def test_unknown_confidence_is_medium():
    assert coerce_confidence("HIGH risk") is Confidence.high
    assert coerce_confidence("low") is Confidence.low
    assert coerce_confidence("probable") is Confidence.medium
    assert coerce_confidence(None) is Confidence.medium


def test_alternate_field_names():
    row = coerce_parameter({
        "test_name": "LDL",
        "result_value": 162,
        "reference_range": "< 130",
        "status": "High",
        "clinical_significance": "Raised",
        "ocr_snippet": "LDL 162",
    })
    assert row.parameter == "LDL"
    assert row.value == "162"
    assert row.unit == "N/A"
    assert row.report_range == "< 130"
    assert row.normal_range == "< 130"
    assert row.note == "Raised"
    assert row.source_snippet == "LDL 162"

    pred = coerce_prediction({
        "possible_condition": "Hyperlipidemia",
        "confidence": "High",
        "risk_factors": ["LDL", ""],
        "reason_one_line": "LDL above range",
        "proof_citation": "ACC/AHA",
    })
    assert pred.condition == "Hyperlipidemia"
    assert pred.linked_values == ["LDL"]
    assert pred.reason == "LDL above range"
    assert pred.citation == "ACC/AHA"


def test_prediction_without_linked_values_links_reason():
    pred = coerce_prediction({"condition": "Anemia", "reason": "Low Hb"})
    assert pred.linked_values == ["Low Hb"]
    assert coerce_prediction({"confidence": "High"}) is None


def test_legacy_rows_are_read():
    row = coerce_parameter({"test": "Hemoglobin", "value": "10", "range": "12-15", "status": "Low", "icon": "⚠️"})
    assert row.provenance is Provenance.legacy
    assert row.status is ParameterStatus.abnormal
    assert row.unit == "N/A"
    assert row.note == "Please consult your healthcare provider"

    pred = coerce_prediction({"risk_level": "High", "condition": "Anemia", "recommendation": "See a doctor"})
    assert pred.confidence is Confidence.high
    assert pred.reason == "See a doctor"
    assert pred.citation == "Clinical guidelines and standard medical practice"


def test_canonicalize_prefers_enhanced_columns():
    enhanced = serialize_parameters([coerce_parameter({"parameter": "Urea", "value": "30", "status": "Normal"})])
    record = {
        "detailed_analysis": enhanced,
        "analysis_results": [{"test": "Old", "value": "1", "status": "Normal"}],
        "prediction_details": [],
        "predictions": [{"risk_level": "Low", "condition": "Legacy only", "recommendation": "Rest"}],
    }
    parameters, predictions = canonicalize(record)
    assert [p.parameter for p in parameters] == ["Urea"]
    assert [p.condition for p in predictions] == ["Legacy only"]


def test_canonicalize_empty_record():
    assert canonicalize({}) == ([], [])


def test_stored_provenance_round_trips():
    stored = serialize_parameters([
        coerce_parameter({"parameter": "Albumin", "value": "4.1"}, provenance=Provenance.reference_default)
    ])
    parameters, _ = canonicalize({"detailed_analysis": stored})
    assert parameters[0].provenance is Provenance.reference_default


def test_legacy_mirrors_derive_from_canonical():
    row = coerce_parameter({"parameter": "Glucose", "value": "180", "normal_range": "70-100", "status": "High"})
    assert to_legacy_parameter(row) == {
        "test": "Glucose",
        "value": "180",
        "range": "70-100",
        "status": "abnormal",
        "icon": "⚠️",
    }
    pred = coerce_prediction({"condition": "Diabetes", "confidence": "Low", "citation": "ADA"})
    assert to_legacy_prediction(pred) == {"risk_level": "Low", "condition": "Diabetes", "recommendation": "ADA"}
