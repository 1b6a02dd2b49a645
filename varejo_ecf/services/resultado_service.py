"""
resultado_service.py — Post-processing of a consulta result for the API.

- Date filter: keep only cupons/resumos of one DD/MM/YYYY day
- Total: sum of VLRTOT over the (filtered) cupons
"""

from decimal import Decimal
from typing import Optional

from varejo_ecf.schemas.models import ConsultaResult, Cupom
from varejo_ecf.utils.ecf_helpers import filter_date_to_rzdata


def filtrar_por_data(result: ConsultaResult, data_filtro: Optional[str]) -> ConsultaResult:
    """
    Restrict a result to one movement date.
    A blank or malformed filter returns the result untouched.
    """
    if not data_filtro or not data_filtro.strip():
        return result
    rzdata = filter_date_to_rzdata(data_filtro)
    if rzdata is None:
        return result

    return ConsultaResult(
        cupons=[c for c in result.cupons if c.rzdata == rzdata],
        resumos=[r for r in result.resumos if r.rzdata == rzdata],
        falhas=result.falhas,
    )


def total_valor_cupons(cupons: list[Cupom]) -> Decimal:
    return sum((c.vlrtot or Decimal("0") for c in cupons), Decimal("0"))
