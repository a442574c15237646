import csv
import io
from datetime import datetime, timezone
from types import SimpleNamespace

from medisync.services.normalizer import normalize
from medisync.services.presentation import export_csv, export_text, health_summary
from medisync.services.report_store import analysis_fields

EXTRACTION = (
    '{"abnormal_values":[{"test_name":"Glucose","result_value":"180","unit":"mg/dL",'
    '"reference_range":"70-100","status":"High","clinical_significance":"Raised sugar"}],'
    '"prediction_table":[{"condition":"Prediabetes","confidence":"Medium","reason":"High glucose",'
    '"citation":"ADA"}]}'
)


def _record(**overrides):
    fields = analysis_fields(normalize("Glucose 180 mg/dL", EXTRACTION))
    fields.update(
        file_name="cbc.pdf",
        created_at=datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc),
        processing_status="completed",
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


def test_csv_has_both_sections():
    rows = list(csv.reader(io.StringIO(export_csv(_record()))))

    assert rows[0] == ["ANALYSIS RESULTS"]
    assert rows[1][0] == "Parameter"
    assert rows[2][:3] == ["Glucose", "180", "mg/dL"]
    assert rows[2][5] == "⚠️ Abnormal"
    assert rows[2][-1] == "extracted"
    assert rows[3][-1] == "reference_default"
    split = rows.index(["PREDICTIONS"])
    assert split == 2 + 10 + 1
    assert rows[split + 2][:2] == ["Prediabetes", "Medium"]


def test_text_export_marks_placeholders():
    text = export_text(_record(), now=datetime(2024, 3, 2, 12, 0, tzinfo=timezone.utc))

    assert text.startswith("MediSync AI - Enhanced Medical Report Analysis")
    assert "Report: cbc.pdf" in text
    assert "Date: 2024-03-01" in text
    assert "Parameter: Glucose" in text
    assert text.count("Placeholder: reference value, not measured in this report") == 9
    assert "Summary: 9 Normal, 1 Abnormal parameters detected." in text
    assert "Generated by MediSync AI - 2024-03-02 12:00 UTC" in text


def test_legacy_only_record_still_renders():
    record = SimpleNamespace(
        file_name="old.pdf",
        created_at=None,
        processing_status="completed",
        detailed_analysis=None,
        prediction_details=None,
        analysis_results=[{"test": "Hemoglobin", "value": "10", "range": "12-15", "status": "abnormal", "icon": "⚠️"}],
        predictions=[{"risk_level": "High", "condition": "Anemia", "recommendation": "Iron studies"}],
    )
    rows = list(csv.reader(io.StringIO(export_csv(record))))
    assert rows[2][:2] == ["Hemoglobin", "10"]
    assert rows[2][-1] == "legacy"
    assert "Condition: Anemia" in export_text(record)


def test_health_summary_only_abnormal_rows_with_notes():
    fragment = normalize("", EXTRACTION)
    cards = health_summary(fragment.parameters)
    assert [(c.parameter, c.note) for c in cards] == [("Glucose", "Raised sugar")]
