"""
VAREJO-ECF: Dependencias FastAPI
=================================
Injeção de dependências para o serviço de consulta e o agregador.
"""
from functools import lru_cache

from fastapi import Depends

from varejo_ecf.core.config import settings
from varejo_ecf.modules.chunked_aggregator import ChunkedAggregator
from varejo_ecf.modules.consulta_service import ConsultaService


# ── Singletons ──

@lru_cache()
def get_consulta_service() -> ConsultaService:
    """ConsultaEcf client singleton."""
    return ConsultaService()


def get_aggregator(
    service: ConsultaService = Depends(get_consulta_service),
) -> ChunkedAggregator:
    """Agregador com o limite de dias configurado."""
    return ChunkedAggregator(service, threshold_days=settings.chunk_threshold_days)
