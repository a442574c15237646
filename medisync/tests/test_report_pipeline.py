import asyncio

import pytest

from medisync.context import ProfileContext
from medisync.schemas.report import AnalyzeRequest, ReportCreate
from medisync.services.report_pipeline import FALLBACK_NARRATIVE, analyze_batch, analyze_report
from medisync.services.report_store import ReportStore
from medisync.utils.exceptions import AnalysisFailed, GatewayError, PersistenceError, ReportNotFound

CTX = ProfileContext(user_id="user-1", profile_id="profile-1")


def _new_report(store, name="cbc.pdf"):
    return store.create(CTX, ReportCreate(file_name=name, file_type="application/pdf")).id


def test_completed_analysis_persists_canonical_and_legacy(store, gateway, medical_text, run):
    report_id = _new_report(store)

    outcome = run(analyze_report(medical_text, report_id, store, gateway))

    assert outcome.success is True
    assert gateway.steps() == ["classify", "extract", "summary"]
    assert len(outcome.analysis_table) == 10
    assert outcome.prediction_table[0].condition == "Prediabetes"
    assert outcome.patient_friendly_analysis == "## Summary\nAll good."

    record = store.get(report_id)
    assert record.processing_status == "completed"
    assert record.validation_status == "validated"
    assert record.report_type == "medical"
    assert len(record.detailed_analysis) == 10
    assert record.detailed_analysis[0]["parameter"] == "Glucose"
    assert [r["test"] for r in record.analysis_results] == [r["parameter"] for r in record.detailed_analysis]
    assert record.predictions == [
        {"risk_level": "Medium", "condition": "Prediabetes", "recommendation": "Fasting glucose above range"}
    ]
    assert record.patient_info == {"name": "Jane Doe", "age": "45"}
    assert "Extracted Patient Info" in record.ocr_text
    assert record.patient_friendly_analysis == "## Summary\nAll good."


def test_summary_prompt_is_built_from_normalized_rows(store, gateway, medical_text, run):
    report_id = _new_report(store)
    run(analyze_report(medical_text, report_id, store, gateway))
    summary_prompt = gateway.calls[-1][1]
    assert "Glucose" in summary_prompt
    assert "Prediabetes" in summary_prompt


def test_rejected_document_stops_before_extraction(store, make_gateway, run):
    gw = make_gateway(classification='{"is_medical": false, "confidence": "High", "reason": "Sales figures"}')
    report_id = _new_report(store, "sales.pdf")

    outcome = run(analyze_report("Quarterly sales summary", report_id, store, gw))

    assert outcome.success is False
    assert outcome.validation_failed is True
    assert outcome.error == "Document is not a medical report"
    assert gw.steps() == ["classify"]
    record = store.get(report_id)
    assert record.validation_status == "rejected"
    assert record.report_type == "non-medical"
    assert record.processing_status == "rejected"
    assert record.detailed_analysis is None


def test_keyword_fallback_rejects_when_classifier_is_down(store, make_gateway, run):
    gw = make_gateway(classification=GatewayError("connect timeout"))
    report_id = _new_report(store, "bakery.pdf")
    text = "Quarterly sales summary for the bakery: croissants sold 1200 units."

    outcome = run(analyze_report(text, report_id, store, gw))

    assert outcome.success is False
    assert outcome.validation_failed is True
    assert outcome.medical_keywords_found == []
    assert gw.steps() == ["classify"]
    record = store.get(report_id)
    assert record.validation_status == "rejected"
    assert record.processing_status == "rejected"
    assert record.report_type == "non-medical"
    assert record.detailed_analysis is None


def test_extraction_failure_marks_failed(store, make_gateway, medical_text, run):
    gw = make_gateway(extraction=GatewayError("Gemini API error: 503", status_code=503))
    report_id = _new_report(store)

    with pytest.raises(AnalysisFailed) as exc:
        run(analyze_report(medical_text, report_id, store, gw))

    assert exc.value.report_id == report_id
    assert store.get(report_id).processing_status == "failed"
    assert gw.steps() == ["classify", "extract"]


def test_narrative_failure_keeps_record_completed(store, make_gateway, medical_text, run):
    gw = make_gateway(summary=GatewayError("timeout"))
    report_id = _new_report(store)

    outcome = run(analyze_report(medical_text, report_id, store, gw))

    assert outcome.success is True
    assert outcome.patient_friendly_analysis == FALLBACK_NARRATIVE
    record = store.get(report_id)
    assert record.processing_status == "completed"
    assert record.patient_friendly_analysis == FALLBACK_NARRATIVE


def test_malformed_extraction_still_completes(store, make_gateway, medical_text, run):
    gw = make_gateway(extraction="Sorry, I cannot produce a table today.")
    report_id = _new_report(store)

    outcome = run(analyze_report(medical_text, report_id, store, gw))

    assert outcome.success is True
    assert len(outcome.analysis_table) == 10
    assert [p.condition for p in outcome.prediction_table] == ["General Health Monitoring"]


class RejectingStore(ReportStore):
    def save_analysis(self, report_id, fragment, raw_text=None):
        raise PersistenceError("constraint violation", report_id=report_id)


def test_persistence_error_surfaces_and_marks_failed(gateway, medical_text, run):
    store = RejectingStore()
    report_id = _new_report(store)

    with pytest.raises(PersistenceError) as exc:
        run(analyze_report(medical_text, report_id, store, gateway))

    assert exc.value.public_message == "Failed to save analysis results"
    assert store.get(report_id).processing_status == "failed"


def test_unknown_report_id(store, gateway, medical_text, run):
    with pytest.raises(ReportNotFound):
        run(analyze_report(medical_text, "missing-id", store, gateway))


def test_batch_isolates_slow_item(store, make_gateway, medical_text, extraction_json, run):
    async def extraction(prompt):
        if "SLOW" in prompt:
            await asyncio.sleep(5)
        return extraction_json

    gw = make_gateway(extraction=extraction)
    fast_id = _new_report(store, "fast.pdf")
    slow_id = _new_report(store, "slow.pdf")
    other_id = _new_report(store, "other.pdf")
    items = [
        AnalyzeRequest(report_text=medical_text, report_id=fast_id),
        AnalyzeRequest(report_text=medical_text + "\nSLOW", report_id=slow_id),
        AnalyzeRequest(report_text=medical_text, report_id=other_id),
    ]

    results = run(analyze_batch(items, store, gw, max_concurrency=2, item_timeout_s=0.5))

    assert [r.report_id for r in results] == [fast_id, slow_id, other_id]
    assert [r.success for r in results] == [True, False, True]
    assert results[1].error == "Analysis timed out. You can retry later."
    assert store.get(slow_id).processing_status == "failed"
    assert store.get(fast_id).processing_status == "completed"
    assert store.get(other_id).processing_status == "completed"


def test_batch_reports_item_errors_without_raising(store, make_gateway, medical_text, run):
    gw = make_gateway(extraction=GatewayError("down"))
    report_id = _new_report(store)

    results = run(analyze_batch([AnalyzeRequest(report_text=medical_text, report_id=report_id)], store, gw))

    assert results[0].success is False
    assert results[0].error == "Failed to analyze report. You can retry later."


def test_batch_slow_narrative_falls_back_without_failing(store, make_gateway, medical_text, run):
    async def summary(prompt):
        await asyncio.sleep(2)
        return "## Summary\nToo late."

    gw = make_gateway(summary=summary)
    report_id = _new_report(store)

    results = run(analyze_batch(
        [AnalyzeRequest(report_text=medical_text, report_id=report_id)], store, gw, item_timeout_s=0.5
    ))

    assert results[0].success is True
    assert results[0].patient_friendly_analysis == FALLBACK_NARRATIVE
    assert gw.steps() == ["classify", "extract", "summary"]
    record = store.get(report_id)
    assert record.processing_status == "completed"
    assert record.patient_friendly_analysis == FALLBACK_NARRATIVE
    assert len(record.detailed_analysis) == 10
