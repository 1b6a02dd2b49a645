"""
VAREJO-ECF — Module 2: Reconciler
Turns the flat, repeated-record ConsultaEcf dataset into cupons with their
items, sub-items and finalizadoras, plus the daily resumos.

Stages (each one reads the maps built by the previous ones):
1. cupom_fichatecnica  → sub-items keyed by "COO-NNN"
2. cupom_item          → items per COO, merged by MATNR
3. cupom_finalizadora  → finalizadoras per COO, deduplicated by 5-key
4. cupom               → cupons keyed by CHCFE, first occurrence wins
5. cupons sorted by COO
6. cupom_resumo        → resumos, one per record

All maps are local to one call.
"""

import logging
from decimal import Decimal

from varejo_ecf.modules.markup_extractor import XmlDocument, parse_document, text, decimal
from varejo_ecf.schemas.models import (
    ConsultaResult,
    Cupom,
    CupomFinalizadora,
    CupomItem,
    CupomResumo,
    CupomSubItem,
)
from varejo_ecf.utils.ecf_helpers import finalizadora_key, sort_cupons, sub_item_key

logger = logging.getLogger(__name__)

KIT_MATERIAL_PREFIX = "4000"

ZERO = Decimal("0")


def _build_sub_items(document: XmlDocument) -> dict[str, list[CupomSubItem]]:
    sub_items: dict[str, list[CupomSubItem]] = {}
    for node in document.elements("cupom_fichatecnica"):
        coo = text(node, "COO")
        item_num = text(node, "ITEM")
        if not coo or not item_num:
            continue
        sub_items.setdefault(sub_item_key(coo, item_num), []).append(CupomSubItem(
            matnr2=text(node, "MATNR2"),
            qte2=decimal(node, "QTE2"),
            und2=text(node, "UND2"),
        ))
    return sub_items


def _build_items(
    document: XmlDocument,
    sub_items: dict[str, list[CupomSubItem]],
) -> dict[str, list[CupomItem]]:
    items_by_coo: dict[str, list[CupomItem]] = {}
    for node in document.elements("cupom_item"):
        coo = text(node, "COO")
        matnr = text(node, "MATNR")
        if not coo or not matnr:
            continue
        items = items_by_coo.setdefault(coo, [])
        item_num = text(node, "ITEM")

        qte = decimal(node, "QTE") or ZERO
        total = decimal(node, "TOTAL") or ZERO
        desconto = decimal(node, "DESCONTO") or ZERO

        existing = next((it for it in items if it.matnr == matnr), None)
        item_sub_items = sub_items.get(sub_item_key(coo, item_num)) if item_num else None

        # Kit lines (with ficha técnica) are never folded into an earlier line.
        if existing is not None and not item_sub_items:
            existing.qte = (existing.qte or ZERO) + qte
            existing.total = (existing.total or ZERO) + total
            existing.desconto = (existing.desconto or ZERO) + desconto
            continue

        items.append(CupomItem(
            item=item_num,
            matnr=matnr,
            matnr2=None,
            preco=decimal(node, "PRECO"),
            desconto=desconto,
            qte=qte,
            total=total,
            sub_items=(
                list(item_sub_items)
                if matnr.startswith(KIT_MATERIAL_PREFIX) and item_sub_items
                else None
            ),
        ))
    return items_by_coo


def _build_finalizadoras(document: XmlDocument) -> dict[str, list[CupomFinalizadora]]:
    finalizadoras_by_coo: dict[str, list[CupomFinalizadora]] = {}
    seen: set[tuple] = set()
    for node in document.elements("cupom_finalizadora"):
        coo = text(node, "COO")
        if not coo:
            continue
        item = text(node, "ITEM")
        pagid = text(node, "PAGID")
        bandeira = text(node, "BANDEIRA")
        valor = decimal(node, "VALOR")

        key = finalizadora_key(coo, item, pagid, bandeira, valor)
        if key in seen:
            continue
        seen.add(key)

        finalizadoras_by_coo.setdefault(coo, []).append(CupomFinalizadora(
            item=item,
            pagid=pagid,
            bandeira=bandeira,
            valor=valor,
            troco=decimal(node, "TROCO"),
            autorizacao=text(node, "AUTORIZACAO"),
        ))
    return finalizadoras_by_coo


def _build_cupons(
    document: XmlDocument,
    items_by_coo: dict[str, list[CupomItem]],
    finalizadoras_by_coo: dict[str, list[CupomFinalizadora]],
) -> dict[str, Cupom]:
    cupons: dict[str, Cupom] = {}
    for node in document.elements("cupom"):
        chcfe = text(node, "CHCFE")
        if not chcfe or chcfe in cupons:
            continue
        coo = text(node, "COO")
        cupons[chcfe] = Cupom(
            unidade=text(node, "UNIDADE"),
            necf=text(node, "NECF"),
            rzdata=text(node, "RZDATA"),
            coo=coo,
            vlrtot=decimal(node, "VLRTOT"),
            chcfe=chcfe,
            cancelado=text(node, "CANCELADO") == "true",
            items=items_by_coo.get(coo, []) if coo else [],
            finalizadoras=finalizadoras_by_coo.get(coo, []) if coo else [],
        )
    return cupons


def _build_resumos(document: XmlDocument) -> list[CupomResumo]:
    return [
        CupomResumo(
            unidade=text(node, "UNIDADE"),
            rzdata=text(node, "RZDATA"),
            doc_inicial=text(node, "DOC_INICIAL"),
            doc_final=text(node, "DOC_FINAL"),
            vlr_bruto=decimal(node, "VLRBRUTO"),
            vlr_liquido=decimal(node, "VLRLIQUIDO"),
            vlr_cancelado=decimal(node, "VLRCANCELADO"),
            vlr_desconto=decimal(node, "VLRDESCONTO"),
        )
        for node in document.elements("cupom_resumo")
    ]


def reconcile(document: XmlDocument) -> ConsultaResult:
    """Build the normalized cupons and resumos of one parsed response."""
    sub_items = _build_sub_items(document)
    items_by_coo = _build_items(document, sub_items)
    finalizadoras_by_coo = _build_finalizadoras(document)
    cupons = _build_cupons(document, items_by_coo, finalizadoras_by_coo)
    resumos = _build_resumos(document)

    logger.debug(
        f"Reconciled {len(cupons)} cupons, {len(resumos)} resumos "
        f"({len(sub_items)} fichas técnicas)"
    )
    return ConsultaResult(cupons=sort_cupons(list(cupons.values())), resumos=resumos)


def reconcile_xml(xml_text: str) -> ConsultaResult:
    """Parse + reconcile. Raises ParseError for malformed markup."""
    return reconcile(parse_document(xml_text))
