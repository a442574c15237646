import asyncio
import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure tests use an in-memory SQLite DB and never reach the real model endpoint
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENCRYPTION_SECRET", "test-secret")
os.environ["GEMINI_API_KEY"] = ""

# Ensure the project root is on sys.path so `import medisync` works when running
# pytest from the repository root.
ROOT_DIR = Path(__file__).resolve().parents[2]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from medisync.app import app
from medisync.db.session import Base
from medisync.deps import get_gateway
from medisync.limiter import limiter
from medisync.services.gemini import CLASSIFICATION_OPTIONS, EXTRACTION_OPTIONS, SUMMARY_OPTIONS
from medisync.services.report_store import ReportStore

# In-memory SQLite shared across connections
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Code paths resolve SessionLocal/engine from the module at call time
import medisync.db.session as session_mod
session_mod.engine = engine
session_mod.SessionLocal = TestingSessionLocal
import medisync.models as models_mod
models_mod.engine = engine


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    limiter.reset()
    yield


MEDICAL_TEXT = (
    "City Hospital Lab - Patient: Jane Doe\n"
    "Hemoglobin 13.5 g/dL (12.0-15.5)\n"
    "Glucose 180 mg/dL (70-100) High\n"
    "Total Cholesterol 190 mg/dL\n"
    "Doctor: Dr. Smith"
)

EXTRACTION_JSON = (
    '{"patient_info": {"name": "Jane Doe", "age": "45"},'
    ' "abnormal_values": [{"test_name": "Glucose", "result_value": "180", "unit": "mg/dL",'
    ' "reference_range": "70-100", "status": "High", "deviation": "+80%",'
    ' "clinical_significance": "Elevated fasting glucose"}],'
    ' "normal_values": [{"test_name": "Hemoglobin", "result_value": "13.5", "unit": "g/dL",'
    ' "reference_range": "12.0-15.5"}],'
    ' "prediction_table": [{"possible_condition": "Prediabetes", "confidence": "Medium",'
    ' "risk_factors": ["Glucose"], "reason_one_line": "Fasting glucose above range",'
    ' "proof_citation": "ADA Standards of Care"}]}'
)

CLASSIFY_MEDICAL = '{"is_medical": true, "confidence": "High", "medical_keywords_found": ["glucose"], "reason": "Lab values"}'


class FakeGateway:
    """Answers by generation preset so tests can script each pipeline step.

    A value may be a string, an exception instance (raised) or an awaitable
    factory ``async def (prompt) -> str``.
    """

    def __init__(self, classification=CLASSIFY_MEDICAL, extraction=EXTRACTION_JSON, summary="## Summary\nAll good."):
        self.responses = {
            CLASSIFICATION_OPTIONS: classification,
            EXTRACTION_OPTIONS: extraction,
            SUMMARY_OPTIONS: summary,
        }
        self.calls = []

    async def generate(self, prompt, options):
        self.calls.append((options, prompt))
        answer = self.responses[options]
        if isinstance(answer, Exception):
            raise answer
        if callable(answer):
            return await answer(prompt)
        return answer

    def steps(self):
        names = {CLASSIFICATION_OPTIONS: "classify", EXTRACTION_OPTIONS: "extract", SUMMARY_OPTIONS: "summary"}
        return [names[options] for options, _ in self.calls]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def store():
    return ReportStore()


@pytest.fixture
def client(gateway):
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.pop(get_gateway, None)


@pytest.fixture
def headers():
    return {"X-User-Id": "user-1", "X-Profile-Id": "profile-1"}


@pytest.fixture
def run():
    return asyncio.run


@pytest.fixture
def make_gateway():
    return FakeGateway


@pytest.fixture
def medical_text():
    return MEDICAL_TEXT


@pytest.fixture
def extraction_json():
    return EXTRACTION_JSON
