"""
VAREJO-ECF — ECF Utilities
Key construction, date handling and formatting shared by the reconciler,
the range planner and the API.
"""

import re
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP, localcontext
from typing import Optional

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")

NOT_AVAILABLE = "N/A"


# ─────────────────────────────────────────────────────────────
# KEYS
# ─────────────────────────────────────────────────────────────

def pad_item(item: str) -> str:
    """Left-pad an item sequence to 3 digits ('1' -> '001'). Longer values are kept."""
    return item.rjust(3, "0")


def sub_item_key(coo: str, item: str) -> str:
    """Composite key linking ficha técnica records to a cupom item: COO-NNN."""
    return f"{coo}-{pad_item(item)}"


def finalizadora_key(
    coo: str,
    item: Optional[str],
    pagid: Optional[str],
    bandeira: Optional[str],
    valor: Optional[Decimal],
) -> tuple:
    """Identity of a settlement line. Decimal equality makes '10.5' and '10.50' the same key."""
    return (coo, item, pagid, bandeira, valor)


# ─────────────────────────────────────────────────────────────
# CUPOM ORDERING
# ─────────────────────────────────────────────────────────────

def parse_leading_int(value: Optional[str]) -> Optional[int]:
    """Integer value of the leading digits of `value` ('12a' -> 12), or None."""
    if value is None:
        return None
    match = _LEADING_INT.match(value)
    return int(match.group(1)) if match else None


def coo_sort_key(coo: Optional[str]) -> tuple:
    """
    Sort key for cupons by COO.
    Numeric COOs first (ascending), then non-numeric ones lexicographically,
    then cupons without COO.
    """
    if coo is None:
        return (2, 0, "")
    number = parse_leading_int(coo)
    if number is None:
        return (1, 0, coo)
    return (0, number, coo)


def sort_cupons(cupons: list) -> list:
    return sorted(cupons, key=lambda c: coo_sort_key(c.coo))


# ─────────────────────────────────────────────────────────────
# DATES
# ─────────────────────────────────────────────────────────────

QUERY_DATE_FORMAT = "%d.%m.%Y"


def parse_query_date(value: Optional[str]) -> Optional[date]:
    """Parse a DD.MM.YYYY query date. Returns None for anything that is not a real calendar date."""
    if not value:
        return None
    try:
        return datetime.strptime(value.strip(), QUERY_DATE_FORMAT).date()
    except ValueError:
        return None


def format_query_date(value: date) -> str:
    return f"{value.day:02d}.{value.month:02d}.{value.year:04d}"


def validate_query_date(value: str) -> bool:
    """
    Basic query date validation.
    Expected format: DD.MM.YYYY (zero-padded)
    """
    parts = value.split(".")
    if len(parts) != 3:
        return False
    lengths = [2, 2, 4]
    if not all(len(part) == length and part.isdigit() for part, length in zip(parts, lengths)):
        return False
    return parse_query_date(value) is not None


def validate_estabelecimento(value: str) -> bool:
    return bool(value and value.strip())


def format_rzdata(value: Optional[str]) -> str:
    """YYYYMMDD -> DD/MM/YYYY. Anything not exactly 8 characters is 'N/A'."""
    if not value or len(value) != 8:
        return NOT_AVAILABLE
    return f"{value[6:8]}/{value[4:6]}/{value[0:4]}"


def filter_date_to_rzdata(value: str) -> Optional[str]:
    """DD/MM/YYYY filter input -> YYYYMMDD wire date, or None when malformed."""
    parts = value.strip().split("/")
    if len(parts) != 3 or [len(p) for p in parts] != [2, 2, 4]:
        return None
    return f"{parts[2]}{parts[1]}{parts[0]}"


# ─────────────────────────────────────────────────────────────
# MONEY
# ─────────────────────────────────────────────────────────────

def format_currency(value: Optional[Decimal]) -> str:
    """Two decimals with a comma separator: Decimal('12.5') -> '12,50'."""
    if value is None:
        return "0,00"
    amount = Decimal(str(value))
    if not amount.is_finite():
        return "0,00"
    with localcontext() as ctx:
        # Room for every integer digit plus the two cents digits.
        ctx.prec = max(ctx.prec, amount.adjusted() + 3)
        quantized = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return str(quantized).replace(".", ",")
