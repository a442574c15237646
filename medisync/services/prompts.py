"""Prompt templates for the three model calls made per report.

The extraction prompt fixes the JSON vocabulary (``patient_info``,
``abnormal_values``, ``normal_values``, ``prediction_table`` and the item
keys) that ``services.normalizer`` reads back, so the two must change
together.
"""
from __future__ import annotations

import json

from medisync.schemas.report import NormalizedAnalysis


def build_classification_prompt(raw_text: str) -> str:
    return f"""You are a medical document classifier. Analyze the following text extracted from a document and determine if it's a valid medical report.

Medical documents typically contain:
- Lab test results (Hemoglobin, WBC, RBC, Glucose, Cholesterol, Creatinine, etc.)
- Vital signs (Blood Pressure, Heart Rate, Temperature)
- Medical terminology (Doctor, Patient, Hospital, Clinic, Test Date)
- Medical imaging references (MRI, CT, X-ray, Ultrasound)
- Prescription or medication references
- Medical diagnosis or conditions
- Reference ranges and normal values

Respond with ONLY a JSON object in this exact format:
{{
  "is_medical": true/false,
  "confidence": "High/Medium/Low",
  "medical_keywords_found": ["keyword1", "keyword2", ...],
  "reason": "Brief explanation of classification"
}}

Document text to analyze:
{raw_text}"""


def build_extraction_prompt(raw_text: str) -> str:
    return f"""Act as a senior clinical data analyst. You are provided with unstructured OCR text from a laboratory report.
Your task is to extract and structure ALL possible medical parameters into a comprehensive JSON format.

Extract every health parameter present, from categories such as:

**HEMATOLOGY**: Hemoglobin, RBC Count, WBC Count, Platelet Count, Hematocrit, MCH, MCHC, MCV, ESR
**BIOCHEMISTRY**: Glucose, Creatinine, Urea, Total Protein, Albumin, Globulin, A/G Ratio, Bilirubin (Total/Direct)
**LIPIDS**: Total Cholesterol, LDL, HDL, VLDL, Triglycerides, Cholesterol/HDL Ratio
**LIVER FUNCTION**: SGOT/AST, SGPT/ALT, ALP, GGT, Total Bilirubin, Direct Bilirubin
**KIDNEY FUNCTION**: Creatinine, Urea, BUN, Uric Acid, Protein, Microalbumin
**DIABETES**: Glucose (Fasting/Random), HbA1c, Insulin, C-Peptide
**THYROID**: TSH, T3, T4, Free T3, Free T4
**CARDIAC**: CK-MB, Troponin, LDH, CPK
**ELECTROLYTES**: Sodium, Potassium, Chloride, Bicarbonate, Calcium, Phosphorus, Magnesium
**VITAMINS**: Vitamin D, B12, Folate, Iron, TIBC, Ferritin
**HORMONES**: Testosterone, Estrogen, Cortisol, Growth Hormone
**INFLAMMATION**: CRP, ESR, Procalcitonin
**IMMUNOLOGY**: IgG, IgM, IgA, Complement C3/C4

For each test detected, extract:
- test_name (use standard medical nomenclature)
- result_value (numeric or qualitative)
- unit (mg/dL, mmol/L, IU/L, etc.)
- reference_range (exact range from report if available)
- normal_range (standard clinical range if reference missing)
- status (Normal / High / Low / Abnormal)
- deviation (% difference from normal range midpoint if calculable)
- clinical_significance (brief note about health impact)

Special extraction rules:
- Look for abbreviated names (Hb for Hemoglobin, SGPT for ALT, etc.)
- Extract ratios and calculated values (A/G ratio, Cholesterol/HDL, etc.)
- Include qualitative tests (Reactive/Non-Reactive, Positive/Negative)
- Parse complex results (e.g., "Glucose: 120 mg/dL (Fasting)")
- Detect and extract patient metadata: name, age, gender, report_date, lab_name
- Only report values that appear in the text; never invent results
- For abnormal values, provide specific clinical significance
- For predictions, analyze patterns across multiple abnormal parameters

Analyze the following medical report text:

{raw_text}

Return ONLY JSON in this shape:

{{
  "patient_info": {{
    "name": "",
    "age": "",
    "gender": "",
    "report_date": "",
    "lab_name": ""
  }},
  "abnormal_values": [
    {{
      "test_name": "string (use standard medical names)",
      "result_value": "string/number",
      "unit": "string (mg/dL, mmol/L, IU/L, etc.)",
      "reference_range": "string (from report)",
      "normal_range": "string (standard clinical range)",
      "status": "High" | "Low" | "Abnormal",
      "deviation": "string (% above/below normal)",
      "clinical_significance": "string (health impact explanation)"
    }}
  ],
  "normal_values": [
    {{
      "test_name": "string (use standard medical names)",
      "result_value": "string/number",
      "unit": "string",
      "reference_range": "string (from report)",
      "normal_range": "string (standard clinical range)",
      "status": "Normal",
      "clinical_significance": "string (confirms healthy status)"
    }}
  ],
  "prediction_table": [
    {{
      "possible_condition": "string (specific medical condition)",
      "reason": "string (which abnormal values indicate this)",
      "confidence": "High" | "Medium" | "Low",
      "evidence": "string (medical literature support)",
      "risk_factors": ["list of contributing parameters"]
    }}
  ]
}}"""


def build_summary_prompt(fragment: NormalizedAnalysis) -> str:
    """Narrative prompt over the already-normalized rows, not the raw model output."""
    parameters = [p.model_dump(mode="json") for p in fragment.parameters]
    payload = {
        "patient_info": fragment.patient_info,
        "abnormal_values": [p for p, src in zip(parameters, fragment.parameters) if not src.status.is_normal],
        "normal_values": [p for p, src in zip(parameters, fragment.parameters) if src.status.is_normal],
        "prediction_table": [p.model_dump(mode="json") for p in fragment.predictions],
    }
    return f"""You are an expert virtual medical assistant. Based on the following JSON lab report data, generate a structured output with TWO parts:

1. Tables
- Create two Markdown tables:
   - **Abnormal Findings Table**: Include Test Name, Result, Unit, and Reference Range for only abnormal values.
   - **Normal Findings Table**: Include Test Name, Result, Unit, and Reference Range for only normal values.
- Rows whose "provenance" is "reference_default" are display placeholders, not results from this report; leave them out of both tables.

2. Patient-Friendly Summary
- Write in simple, easy-to-understand language (avoid medical jargon).
- List the most important abnormal findings in **bullet points**, with each point having a short explanation.
   Example: *"High blood sugar - may indicate poor sugar control and possible diabetes risk."*
- Keep it concise enough to fit on a dashboard tile or quick health card.
- End with a supportive line:
   *"Please consult your doctor for personalized advice. Early awareness helps prevention."*

Make the output clean, well-formatted, and directly usable for display in a health dashboard.

Structured JSON data:
{json.dumps(payload, ensure_ascii=False)}"""


__all__ = ["build_classification_prompt", "build_extraction_prompt", "build_summary_prompt"]
