"""End-to-end analysis of one uploaded report, and bounded fan-out over many.

Per report the three model calls run strictly in order:
classification -> extraction -> narrative. Only a failed extraction call or a
rejected store write ends the run with an error; everything else degrades to
a safe default.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional, Tuple

from medisync import config
from medisync.models.medical_report import ProcessingStatus
from medisync.schemas.report import AnalysisOutcome, AnalyzeRequest, NormalizedAnalysis
from medisync.services.gemini import EXTRACTION_OPTIONS, SUMMARY_OPTIONS, GatewayError, ModelGateway
from medisync.services.normalizer import normalize
from medisync.services.prompts import build_extraction_prompt, build_summary_prompt
from medisync.services.report_store import ReportStore
from medisync.services.validation import Classification, classify
from medisync.utils.exceptions import AnalysisFailed, MedisyncError, PersistenceError

logger = logging.getLogger("medisync")

FALLBACK_NARRATIVE = (
    "## Health Analysis\n\nYour report has been processed successfully. "
    "Please consult with your healthcare provider for detailed interpretation."
)
NOT_MEDICAL_ERROR = "Document is not a medical report"
TIMEOUT_ERROR = "Analysis timed out. You can retry later."


def _mark_failed(store: ReportStore, report_id: str) -> None:
    try:
        store.mark_failed(report_id)
    except PersistenceError:
        # the original error is what the caller needs to see
        logger.exception("could not mark report %s as failed", report_id)


async def generate_narrative(
    fragment: NormalizedAnalysis,
    gateway: ModelGateway,
    timeout_s: Optional[float] = None,
) -> str:
    """Patient-facing summary; any failure or timeout yields FALLBACK_NARRATIVE."""
    call = gateway.generate(build_summary_prompt(fragment), SUMMARY_OPTIONS)
    try:
        if timeout_s is None:
            text = await call
        else:
            text = await asyncio.wait_for(call, timeout=max(0.0, timeout_s))
    except GatewayError as e:
        logger.warning({"function": "generate_narrative", "status": "fallback", "error": str(e)})
        return FALLBACK_NARRATIVE
    except asyncio.TimeoutError:
        logger.warning({"function": "generate_narrative", "status": "fallback", "error": "timeout"})
        return FALLBACK_NARRATIVE
    return text.strip()


def _rejected_outcome(report_id: str, verdict: Classification) -> AnalysisOutcome:
    return AnalysisOutcome(
        report_id=report_id,
        success=False,
        validation_failed=True,
        report_type=verdict.report_type,
        validation_status=verdict.validation_status,
        validation_message=verdict.message,
        medical_keywords_found=verdict.keywords_found,
        error=NOT_MEDICAL_ERROR,
    )


async def _ingest(
    raw_text: str, report_id: str, store: ReportStore, gateway: ModelGateway
) -> Tuple[Classification, Optional[NormalizedAnalysis]]:
    """Gate, extract, normalize and persist; the fragment is None for rejected documents."""
    logger.info({"function": "analyze_report", "report_id": report_id, "stage": "start", "chars": len(raw_text or "")})

    verdict = await classify(raw_text, gateway)
    store.update(
        report_id,
        report_type=verdict.report_type,
        validation_status=verdict.validation_status,
        validation_message=verdict.message,
        processing_status=(
            ProcessingStatus.processing.value if verdict.is_medical else ProcessingStatus.rejected.value
        ),
        ocr_text=raw_text,
    )

    if not verdict.is_medical:
        logger.info({"function": "analyze_report", "report_id": report_id, "stage": "rejected"})
        return verdict, None

    try:
        model_output = await gateway.generate(build_extraction_prompt(raw_text), EXTRACTION_OPTIONS)
    except GatewayError as e:
        logger.error({"function": "analyze_report", "report_id": report_id, "stage": "extraction", "error": str(e)})
        _mark_failed(store, report_id)
        raise AnalysisFailed(str(e), report_id=report_id) from e

    fragment = normalize(raw_text, model_output)
    try:
        store.save_analysis(report_id, fragment, raw_text)
    except PersistenceError:
        _mark_failed(store, report_id)
        raise
    return verdict, fragment


async def _finish(
    report_id: str,
    verdict: Classification,
    fragment: NormalizedAnalysis,
    store: ReportStore,
    gateway: ModelGateway,
    narrative_timeout_s: Optional[float] = None,
) -> AnalysisOutcome:
    # the record is already completed here; nothing below may mark it failed
    narrative = await generate_narrative(fragment, gateway, narrative_timeout_s)
    store.update(report_id, patient_friendly_analysis=narrative)

    logger.info({
        "function": "analyze_report",
        "report_id": report_id,
        "stage": "completed",
        "parameters": len(fragment.parameters),
        "predictions": len(fragment.predictions),
        "parse_mode": fragment.parse_mode,
    })
    return AnalysisOutcome(
        report_id=report_id,
        success=True,
        report_type=verdict.report_type,
        validation_status=verdict.validation_status,
        validation_message=verdict.message,
        medical_keywords_found=verdict.keywords_found,
        analysis_table=fragment.parameters,
        prediction_table=fragment.predictions,
        patient_friendly_analysis=narrative,
    )


async def analyze_report(raw_text: str, report_id: str, store: ReportStore, gateway: ModelGateway) -> AnalysisOutcome:
    verdict, fragment = await _ingest(raw_text, report_id, store, gateway)
    if fragment is None:
        return _rejected_outcome(report_id, verdict)
    return await _finish(report_id, verdict, fragment, store, gateway)


async def analyze_batch(
    items: Iterable[AnalyzeRequest],
    store: ReportStore,
    gateway: ModelGateway,
    max_concurrency: Optional[int] = None,
    item_timeout_s: Optional[float] = None,
) -> List[AnalysisOutcome]:
    """Analyse many reports with at most ``max_concurrency`` in flight.

    Each report gets its own time budget. Running out of it before the
    analysis is saved marks the report failed; running out during the
    narrative only swaps in the fallback text. A slow or failing report never
    affects the others, and results keep the input order.
    """
    limit = max(1, max_concurrency or config.ANALYSIS_MAX_CONCURRENCY)
    timeout = item_timeout_s if item_timeout_s is not None else config.ANALYSIS_ITEM_TIMEOUT_S
    semaphore = asyncio.Semaphore(limit)
    loop = asyncio.get_running_loop()

    async def run_one(item: AnalyzeRequest) -> AnalysisOutcome:
        async with semaphore:
            started = loop.time()
            try:
                verdict, fragment = await asyncio.wait_for(
                    _ingest(item.report_text, item.report_id, store, gateway),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                logger.error({"function": "analyze_batch", "report_id": item.report_id, "status": "timeout"})
                _mark_failed(store, item.report_id)
                return AnalysisOutcome(report_id=item.report_id, success=False, error=TIMEOUT_ERROR)
            except MedisyncError as e:
                return AnalysisOutcome(report_id=item.report_id, success=False, error=e.public_message)

            if fragment is None:
                return _rejected_outcome(item.report_id, verdict)
            remaining = timeout - (loop.time() - started)
            try:
                return await _finish(item.report_id, verdict, fragment, store, gateway, remaining)
            except MedisyncError as e:
                return AnalysisOutcome(report_id=item.report_id, success=False, error=e.public_message)

    results = await asyncio.gather(*(run_one(item) for item in items))
    logger.info({
        "function": "analyze_batch",
        "count": len(results),
        "succeeded": sum(1 for r in results if r.success),
        "rejected": sum(1 for r in results if r.validation_failed),
    })
    return list(results)


__all__ = ["analyze_report", "analyze_batch", "generate_narrative", "FALLBACK_NARRATIVE"]
