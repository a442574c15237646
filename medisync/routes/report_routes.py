# medisync/routes/report_routes.py
from typing import List, Literal, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Request, Response, status

from medisync import config
from medisync.context import ProfileContext
from medisync.deps import get_gateway, get_profile_context, get_report_store
from medisync.limiter import limiter
from medisync.schemas.report import (
    AnalysisOutcome,
    AnalyzeBatchRequest,
    AnalyzeRequest,
    BatchOutcome,
    ReportCreate,
    ReportOut,
    ReportStats,
    ReportView,
)
from medisync.services.gemini import ModelGateway
from medisync.services.presentation import build_view, export_csv, export_text
from medisync.services.report_pipeline import analyze_batch, analyze_report
from medisync.services.report_store import ReportStore

router = APIRouter(prefix="/api", tags=["reports"])

StatusFilter = Literal["completed", "pending", "failed", "rejected"]


@router.post("/reports", response_model=ReportOut, status_code=status.HTTP_201_CREATED)
def create_report(
    payload: ReportCreate,
    ctx: ProfileContext = Depends(get_profile_context),
    store: ReportStore = Depends(get_report_store),
):
    return store.create(ctx, payload)


@router.get("/reports", response_model=List[ReportOut])
def list_reports(
    status_filter: Optional[StatusFilter] = Query(default=None, alias="status"),
    ctx: ProfileContext = Depends(get_profile_context),
    store: ReportStore = Depends(get_report_store),
):
    return store.list(ctx, status_filter)


@router.get("/reports/stats", response_model=ReportStats)
def report_stats(
    ctx: ProfileContext = Depends(get_profile_context),
    store: ReportStore = Depends(get_report_store),
):
    return ReportStats(**store.stats(ctx))


@router.get("/reports/{report_id}", response_model=ReportView)
def get_report(
    report_id: str,
    ctx: ProfileContext = Depends(get_profile_context),
    store: ReportStore = Depends(get_report_store),
):
    return build_view(store.get(report_id, ctx))


def _content_disposition(filename: str) -> str:
    # header values must be latin-1; non-ASCII names travel in filename*
    filename = filename.replace('"', "").replace("\\", "")
    fallback = "".join(ch if " " <= ch < "\x7f" else "_" for ch in filename)
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


@router.get("/reports/{report_id}/export")
def export_report(
    report_id: str,
    fmt: Literal["csv", "txt"] = Query(default="csv", alias="format"),
    ctx: ProfileContext = Depends(get_profile_context),
    store: ReportStore = Depends(get_report_store),
):
    report = store.get(report_id, ctx)
    if fmt == "csv":
        body, media_type, suffix = export_csv(report), "text/csv", "analysis.csv"
    else:
        body, media_type, suffix = export_text(report), "text/plain", "detailed_analysis.txt"
    return Response(
        content=body,
        media_type=media_type,
        headers={"Content-Disposition": _content_disposition(f"{report.file_name}_{suffix}")},
    )


@router.delete("/reports/{report_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_report(
    report_id: str,
    ctx: ProfileContext = Depends(get_profile_context),
    store: ReportStore = Depends(get_report_store),
):
    store.delete(report_id, ctx)
    return None


@router.post("/analyze-report", response_model=AnalysisOutcome, response_model_exclude_none=True)
@limiter.limit(config.ANALYZE_RATE_LIMIT)
async def analyze(
    request: Request,
    payload: AnalyzeRequest,
    ctx: ProfileContext = Depends(get_profile_context),
    store: ReportStore = Depends(get_report_store),
    gateway: ModelGateway = Depends(get_gateway),
):
    # ownership check; raises ReportNotFound for other users' ids
    store.get(payload.report_id, ctx)
    return await analyze_report(payload.report_text, payload.report_id, store, gateway)


@router.post("/analyze-batch", response_model=BatchOutcome, response_model_exclude_none=True)
@limiter.limit(config.ANALYZE_RATE_LIMIT)
async def analyze_many(
    request: Request,
    payload: AnalyzeBatchRequest,
    ctx: ProfileContext = Depends(get_profile_context),
    store: ReportStore = Depends(get_report_store),
    gateway: ModelGateway = Depends(get_gateway),
):
    for item in payload.items:
        store.get(item.report_id, ctx)
    results = await analyze_batch(payload.items, store, gateway)
    return BatchOutcome(
        results=results,
        succeeded=sum(1 for r in results if r.success),
        rejected=sum(1 for r in results if r.validation_failed),
        failed=sum(1 for r in results if not r.success and not r.validation_failed),
    )
