"""
VAREJO-ECF — Main API Application
FastAPI backend that rebuilds Varejo Fácil ECF receipts for a date range.

Flow:
  1. POST /consulta             → fetch + reconcile, waits for the result
  2. POST /consultas            → same, as a background job (day by day)
  3. GET  /consultas/{job_id}   → job progress (current/total days) and result
  4. DELETE /consultas/{job_id} → stop the day loop early

Architecture:
  - Ranges above the configured threshold are fetched one day at a time
  - A failed day is skipped and reported in `falhas`; the rest is kept
  - Jobs live in memory only and are dropped after JOB_MAX_AGE_HOURS
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone, timedelta
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from varejo_ecf.core.config import settings, get_service_url
from varejo_ecf.dependencies import get_aggregator
from varejo_ecf.modules.chunked_aggregator import ChunkedAggregator, ProgressTracker
from varejo_ecf.modules.consulta_service import TransportError
from varejo_ecf.modules.markup_extractor import ParseError
from varejo_ecf.schemas.models import (
    ConsultaJobRequest,
    ConsultaJobResponse,
    ConsultaResponse,
    ErrorResponse,
    HealthResponse,
    JobStatus,
    QueryParams,
)
from varejo_ecf.services.resultado_service import filtrar_por_data, total_valor_cupons
from varejo_ecf.utils.ecf_helpers import format_currency, validate_estabelecimento, validate_query_date

# ─────────────────────────────────────────────────────────────
# LOGGING
# ─────────────────────────────────────────────────────────────

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("varejo-ecf")


# ─────────────────────────────────────────────────────────────
# IN-MEMORY JOB STORE
# Keyed by job_id. Each job owns its tracker, cancel event and result.
# ─────────────────────────────────────────────────────────────

_jobs: dict[str, dict] = {}
# Structure: { job_id: { "params": QueryParams, "tracker": ProgressTracker, "cancel": asyncio.Event,
#                        "status": JobStatus, "result": ConsultaResult | None, "error": str | None,
#                        "created": datetime } }

JOB_CLEANUP_INTERVAL_SECONDS = 600


def _create_job(params: QueryParams) -> str:
    job_id = str(uuid.uuid4())
    _jobs[job_id] = {
        "params": params,
        "tracker": ProgressTracker(),
        "cancel": asyncio.Event(),
        "status": JobStatus.RUNNING,
        "result": None,
        "error": None,
        "created": datetime.now(timezone.utc),
    }
    return job_id


def _get_job(job_id: str) -> dict:
    job = _jobs.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Consulta {job_id} não encontrada.")
    return job


def _job_response(job_id: str, job: dict) -> ConsultaJobResponse:
    return ConsultaJobResponse(
        job_id=job_id,
        status=job["status"],
        progress=job["tracker"].snapshot(),
        result=job["result"],
        error=job["error"],
    )


async def _run_job(job_id: str, aggregator: ChunkedAggregator, params: QueryParams) -> None:
    job = _jobs.get(job_id)
    if job is None:
        return
    try:
        job["result"] = await aggregator.run(
            params, progress=job["tracker"], cancel_event=job["cancel"]
        )
        job["status"] = JobStatus.CANCELLED if job["cancel"].is_set() else JobStatus.DONE
    except (TransportError, ParseError) as e:
        job["status"] = JobStatus.ERROR
        job["error"] = f"Não foi possível carregar os dados. Detalhe: {e.message}"
        logger.warning(f"Job {job_id[:8]}... failed: {e.message}")
    except Exception as e:
        job["status"] = JobStatus.ERROR
        job["error"] = f"Não foi possível carregar os dados. Detalhe: {e}"
        logger.exception(f"Job {job_id[:8]}... failed unexpectedly: {e}")


async def _cleanup_stale_jobs():
    """Background task: periodically remove finished jobs older than the configured age."""
    while True:
        await asyncio.sleep(JOB_CLEANUP_INTERVAL_SECONDS)
        cutoff = datetime.now(timezone.utc) - timedelta(hours=settings.job_max_age_hours)
        stale = [
            jid for jid, job in _jobs.items()
            if job["created"] < cutoff and job["status"] != JobStatus.RUNNING
        ]
        for jid in stale:
            _jobs.pop(jid, None)
        if stale:
            logger.info(f"Job cleanup: removed {len(stale)} stale job(s). Active: {len(_jobs)}")


# ─────────────────────────────────────────────────────────────
# APP LIFECYCLE
# ─────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"🚀 VAREJO-ECF v{settings.app_version} starting...")
    logger.info(f"   Environment: {settings.varejo_environment.value}")
    logger.info(f"   ConsultaEcf URL: {get_service_url('consulta_ecf')}")
    logger.info(f"   Chunk threshold: {settings.chunk_threshold_days} days")
    cleanup_task = asyncio.create_task(_cleanup_stale_jobs())
    yield
    cleanup_task.cancel()
    for job in _jobs.values():
        job["cancel"].set()
    _jobs.clear()
    logger.info("VAREJO-ECF shutdown complete.")


# ─────────────────────────────────────────────────────────────
# FASTAPI APP
# ─────────────────────────────────────────────────────────────

limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])

app = FastAPI(
    title="VAREJO-ECF API",
    description=(
        "Consulta de cupons fiscais (ECF/CF-e) do Varejo Fácil. "
        "Reconstrói cupons, itens, fichas técnicas, finalizadoras e "
        "resumos diários, dividindo períodos longos em consultas diárias."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)


# ─────────────────────────────────────────────────────────────
# GLOBAL EXCEPTION HANDLERS
# ─────────────────────────────────────────────────────────────

@app.exception_handler(TransportError)
async def transport_error_handler(request: Request, exc: TransportError):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error="TRANSPORT_ERROR", detail=exc.message, code="CONSULTA_FAILED",
        ).model_dump(),
    )


@app.exception_handler(ParseError)
async def parse_error_handler(request: Request, exc: ParseError):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error="PARSE_ERROR", detail=exc.message, code="INVALID_XML",
        ).model_dump(),
    )


def _validate_params(params: QueryParams) -> None:
    if not validate_query_date(params.data_inicial):
        raise HTTPException(
            status_code=422,
            detail=f"Formato de data inválido: '{params.data_inicial}'. Formato esperado: DD.MM.AAAA",
        )
    if not validate_query_date(params.data_final):
        raise HTTPException(
            status_code=422,
            detail=f"Formato de data inválido: '{params.data_final}'. Formato esperado: DD.MM.AAAA",
        )
    if not validate_estabelecimento(params.estabelecimento):
        raise HTTPException(status_code=422, detail="Estabelecimento é obrigatório.")


# ═════════════════════════════════════════════════════════════
# ROUTES
# ═════════════════════════════════════════════════════════════

@app.get("/health", response_model=HealthResponse, tags=["Sistema"])
async def health_check():
    """Verificar estado do serviço."""
    return {
        "status": "ok",
        "version": settings.app_version,
        "environment": settings.varejo_environment.value,
        "consulta_url": get_service_url("consulta_ecf"),
    }


@app.post(
    "/consulta",
    response_model=ConsultaResponse,
    tags=["Consulta"],
    summary="Consultar cupons de um período",
    description=(
        "Consulta o Varejo Fácil e devolve os cupons e resumos reconciliados. "
        "Períodos acima do limite configurado são consultados dia a dia; dias "
        "com falha aparecem em `falhas`. `data_filtro` (DD/MM/AAAA) restringe "
        "o resultado a um único dia."
    ),
)
async def consulta(
    params: QueryParams,
    data_filtro: Optional[str] = None,
    aggregator: ChunkedAggregator = Depends(get_aggregator),
):
    _validate_params(params)

    tracker = ProgressTracker()
    result = await aggregator.run(params, progress=tracker)
    result = filtrar_por_data(result, data_filtro)

    total_valor = total_valor_cupons(result.cupons)

    return ConsultaResponse(
        cupons=result.cupons,
        resumos=result.resumos,
        falhas=result.falhas,
        total_valor=total_valor,
        total_valor_formatado=format_currency(total_valor),
        progress=tracker.snapshot(),
    )


@app.post(
    "/consultas",
    response_model=ConsultaJobResponse,
    status_code=202,
    tags=["Consulta"],
    summary="Iniciar consulta em segundo plano",
)
async def start_consulta_job(
    request: ConsultaJobRequest,
    background_tasks: BackgroundTasks,
    aggregator: ChunkedAggregator = Depends(get_aggregator),
):
    params = QueryParams(
        data_inicial=request.data_inicial,
        data_final=request.data_final,
        estabelecimento=request.estabelecimento,
    )
    _validate_params(params)

    if request.chunked:
        aggregator = ChunkedAggregator(aggregator.fetcher, threshold_days=0)

    job_id = _create_job(params)
    background_tasks.add_task(_run_job, job_id, aggregator, params)
    logger.info(
        f"Job {job_id[:8]}... started: {params.data_inicial}..{params.data_final}, "
        f"estabelecimento={params.estabelecimento}, chunked={request.chunked}"
    )
    return _job_response(job_id, _jobs[job_id])


@app.get("/consultas/{job_id}", response_model=ConsultaJobResponse, tags=["Consulta"])
async def get_consulta_job(job_id: str):
    """Progresso (dias concluídos / total) e resultado quando terminar."""
    return _job_response(job_id, _get_job(job_id))


@app.delete("/consultas/{job_id}", response_model=ConsultaJobResponse, tags=["Consulta"])
async def cancel_consulta_job(job_id: str):
    """Interrompe a consulta antes do próximo dia. O que já foi obtido é mantido."""
    job = _get_job(job_id)
    if job["status"] == JobStatus.RUNNING:
        job["cancel"].set()
        logger.info(f"Job {job_id[:8]}... cancellation requested.")
    return _job_response(job_id, job)


# ─────────────────────────────────────────────────────────────
# ENTRYPOINT
# ─────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "varejo_ecf.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
