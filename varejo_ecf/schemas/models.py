"""
VAREJO-ECF Pydantic Schemas
Domain entities rebuilt from the ConsultaEcf export and API request/response models.
"""

from __future__ import annotations
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum


# ─────────────────────────────────────────────────────────────
# CUPOM ENTITIES
# ─────────────────────────────────────────────────────────────

class CupomSubItem(BaseModel):
    """Component material consumed by a kit line item (ficha técnica)."""
    matnr2: Optional[str] = None
    qte2: Optional[Decimal] = None
    und2: Optional[str] = None


class CupomItem(BaseModel):
    """One sold material within a cupom. Repeated wire records may be merged into it."""
    item: Optional[str] = Field(None, description="Sequência do item (ex.: '001')")
    matnr: Optional[str] = Field(None, description="Código do material")
    matnr2: Optional[str] = None
    preco: Optional[Decimal] = None
    desconto: Optional[Decimal] = None
    qte: Optional[Decimal] = None
    total: Optional[Decimal] = None
    sub_items: Optional[list[CupomSubItem]] = None


class CupomFinalizadora(BaseModel):
    """One payment method applied to a cupom."""
    item: Optional[str] = None
    pagid: Optional[str] = Field(None, description="Identificador da forma de pagamento")
    bandeira: Optional[str] = None
    valor: Optional[Decimal] = None
    troco: Optional[Decimal] = None
    autorizacao: Optional[str] = None


class Cupom(BaseModel):
    """Fiscal sales transaction, identified by its CF-e key (chcfe)."""
    unidade: Optional[str] = None
    necf: Optional[str] = None
    rzdata: Optional[str] = Field(None, description="Data do movimento (YYYYMMDD)")
    coo: Optional[str] = Field(None, description="Contador de ordem de operação")
    vlrtot: Optional[Decimal] = None
    chcfe: Optional[str] = Field(None, description="Chave do CF-e")
    cancelado: bool = False
    items: list[CupomItem] = Field(default_factory=list)
    finalizadoras: list[CupomFinalizadora] = Field(default_factory=list)


class CupomResumo(BaseModel):
    """Daily aggregate totals for one unit/date."""
    unidade: Optional[str] = None
    rzdata: Optional[str] = None
    doc_inicial: Optional[str] = None
    doc_final: Optional[str] = None
    vlr_bruto: Optional[Decimal] = None
    vlr_liquido: Optional[Decimal] = None
    vlr_cancelado: Optional[Decimal] = None
    vlr_desconto: Optional[Decimal] = None


# ─────────────────────────────────────────────────────────────
# CONSULTA
# ─────────────────────────────────────────────────────────────

class QueryParams(BaseModel):
    """ConsultaEcf parameters. Dates use DD.MM.YYYY."""
    data_inicial: str = Field(..., description="Data inicial (DD.MM.YYYY)")
    data_final: str = Field(..., description="Data final (DD.MM.YYYY)")
    estabelecimento: str = Field(..., description="Código do estabelecimento")

    model_config = {"json_schema_extra": {
        "examples": [{"data_inicial": "01.09.2025", "data_final": "01.09.2025", "estabelecimento": "1"}]
    }}


class FalhaConsulta(BaseModel):
    """A sub-range whose fetch or parse failed during a day-by-day run."""
    data_inicial: str
    data_final: str
    error_type: str
    message: str


class ConsultaResult(BaseModel):
    cupons: list[Cupom] = Field(default_factory=list)
    resumos: list[CupomResumo] = Field(default_factory=list)
    falhas: list[FalhaConsulta] = Field(default_factory=list)


class PlanMode(str, Enum):
    SINGLE = "single"
    DAILY = "daily"


class RangePlan(BaseModel):
    mode: PlanMode
    steps: list[QueryParams]


class ProgressInfo(BaseModel):
    current: int = 0
    total: int = 0


# ─────────────────────────────────────────────────────────────
# API RESPONSES
# ─────────────────────────────────────────────────────────────

class ConsultaResponse(ConsultaResult):
    """Synchronous consulta result, optionally filtered by date."""
    total_valor: Decimal = Decimal("0")
    total_valor_formatado: str = Field("0,00", description="Total com vírgula decimal (ex.: '1234,50')")
    progress: ProgressInfo = Field(default_factory=ProgressInfo)


class JobStatus(str, Enum):
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"


class ConsultaJobRequest(QueryParams):
    chunked: bool = Field(
        default=True,
        description="True = sempre dia a dia; False = dia a dia apenas acima do limite configurado",
    )


class ConsultaJobResponse(BaseModel):
    job_id: str
    status: JobStatus
    progress: ProgressInfo
    result: Optional[ConsultaResult] = None
    error: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: str
    code: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check."""
    status: str = "ok"
    version: str
    environment: str
    consulta_url: str
