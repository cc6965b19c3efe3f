"""
Aritmetica monetaria a interi scalati
Progetto: Fiscal Ledger (Registro Fatture Fiscali)

Importi, quantità e tassi di cambio sono interi Python con scala implicita:
- importi: centesimi (scala 2)
- quantità: millesimi (scala 3)
- tassi di cambio: milionesimi (scala 6)

Nessuna operazione passa per float binari. Gli arrotondamenti sono
"half away from zero" e simmetrici rispetto al segno.
"""

import re
from typing import NamedTuple, Optional

from app.core.exceptions import MoneyParseError

AMOUNT_SCALE = 2
QUANTITY_SCALE = 3
RATE_SCALE = 6

# Limiti delle colonne BigInteger
STORABLE_MIN = -(2**63)
STORABLE_MAX = 2**63 - 1

_DECIMAL_RE = re.compile(r"^([+-]?)(?=\d|\.\d)(\d*)(?:\.(\d*))?$")


class InclusiveSplit(NamedTuple):
    """Scomposizione di un importo IVA inclusa."""

    base: int
    vat: int


# ------------------------------------------------------------
# Parsing / formattazione
# ------------------------------------------------------------
def parse_scaled(text: str, scale: int) -> int:
    """
    Converte una stringa decimale in intero alla scala indicata.

    Le cifre decimali oltre la scala vengono troncate, non arrotondate.

    Args:
        text: Stringa nel formato [+-]cifre[.cifre]
        scale: Numero di cifre decimali implicite

    Returns:
        int: Valore scalato

    Raises:
        MoneyParseError: Se l'input non è una stringa decimale valida
            o fuori dai limiti a 64 bit
    """
    if not isinstance(text, str):
        raise MoneyParseError(
            f"Atteso valore decimale come stringa, ricevuto {type(text).__name__}",
            extra={"value": repr(text)},
        )
    match = _DECIMAL_RE.match(text.strip())
    if match is None:
        raise MoneyParseError(
            f"Valore decimale non valido: '{text}'",
            extra={"value": text},
        )
    sign, whole, frac = match.groups()
    frac = (frac or "")[:scale].ljust(scale, "0")
    value = int(whole or "0") * 10**scale + int(frac or "0")
    return ensure_storable(-value if sign == "-" else value, text)


def ensure_storable(value: int, source: Optional[str] = None) -> int:
    """
    Verifica che il valore scalato rientri in un intero con segno a 64 bit.

    Raises:
        MoneyParseError: Valore fuori dai limiti memorizzabili
    """
    if not STORABLE_MIN <= value <= STORABLE_MAX:
        raise MoneyParseError(
            "Valore fuori dai limiti ammessi",
            error_code="AMOUNT_OUT_OF_RANGE",
            extra={"value": source if source is not None else str(value)},
        )
    return value


def format_scaled(value: int, scale: int) -> str:
    """Rende un intero scalato come stringa decimale (es. 116000 → '1160.00')."""
    sign = "-" if value < 0 else ""
    whole, frac = divmod(abs(value), 10**scale)
    if scale == 0:
        return f"{sign}{whole}"
    return f"{sign}{whole}.{frac:0{scale}d}"


def parse_amount(text: str) -> int:
    return parse_scaled(text, AMOUNT_SCALE)


def parse_quantity(text: str) -> int:
    return parse_scaled(text, QUANTITY_SCALE)


def parse_rate(text: str) -> int:
    return parse_scaled(text, RATE_SCALE)


def format_amount(value: int) -> str:
    return format_scaled(value, AMOUNT_SCALE)


def format_quantity(value: int) -> str:
    return format_scaled(value, QUANTITY_SCALE)


def format_rate(value: int) -> str:
    return format_scaled(value, RATE_SCALE)


# ------------------------------------------------------------
# Operazioni
# ------------------------------------------------------------
def _div_round_half_away(numerator: int, denominator: int) -> int:
    """Divisione intera con arrotondamento half-away-from-zero (denominatore > 0)."""
    quotient, remainder = divmod(abs(numerator), denominator)
    if remainder * 2 >= denominator:
        quotient += 1
    return -quotient if numerator < 0 else quotient


def multiply_quantity_price(quantity: int, unit_price: int) -> int:
    """
    Quantità (scala 3) per prezzo unitario (scala 2).

    Il prodotto ha scala 5 e viene riportato a scala 2.

    Example:
        >>> multiply_quantity_price(1500, 333)  # 1.500 x 3.33
        500
    """
    return _div_round_half_away(quantity * unit_price, 10**QUANTITY_SCALE)


def vat_from_base(base: int, rate_percent: Optional[int]) -> int:
    """IVA calcolata su imponibile; aliquota nulla o non positiva → 0."""
    if rate_percent is None or rate_percent <= 0:
        return 0
    return _div_round_half_away(base * rate_percent, 100)


def split_from_inclusive(total: int, rate_percent: Optional[int]) -> InclusiveSplit:
    """
    Scompone un importo IVA inclusa in imponibile e imposta.

    L'imponibile è arrotondato, l'imposta è la differenza: la somma
    restituisce sempre esattamente il totale di partenza.

    Example:
        >>> split_from_inclusive(116000, 16)
        InclusiveSplit(base=100000, vat=16000)
    """
    if rate_percent is None or rate_percent <= 0:
        return InclusiveSplit(base=total, vat=0)
    base = _div_round_half_away(total * 100, 100 + rate_percent)
    return InclusiveSplit(base=base, vat=total - base)
