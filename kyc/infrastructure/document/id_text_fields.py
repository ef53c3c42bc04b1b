# kyc/infrastructure/document/id_text_fields.py
"""
Extrae campos de un documento a partir de líneas de texto OCR.

Soporta licencias de conducir ("FN: ...", "DOB: ..."), pasaportes (etiqueta en una
línea, valor en la siguiente, número desde la MRZ si falta) y un barrido genérico
de número de documento y fechas para lo que quede vacío.
"""
import re
from typing import Dict, Iterable, List, Optional

from ...application.document_policy import (
    DATE_PATTERN, FIRST_NAME, LAST_NAME, ID_NUMBER, DATE_OF_BIRTH, EXPIRATION_DATE,
    find_dates, parse_date,
)

LICENSE_KEYS = {
    "FN": FIRST_NAME,
    "LN": LAST_NAME,
    "DOB": DATE_OF_BIRTH,
    "DL": ID_NUMBER,
    "EXP": EXPIRATION_DATE,
}
_LICENSE_RE = re.compile(r"(?:^|[^A-Z])(FN|LN|DOB|DL|EXP)\s*:\s*(.*)$", re.IGNORECASE)

PASSPORT_LABELS = (
    (("Surname", "Apellidos"), LAST_NAME),
    (("Given Names", "Nombres"), FIRST_NAME),
    (("Date of birth", "Fecha de nacimiento"), DATE_OF_BIRTH),
    (("Date of exp", "Fecha de caducidad"), EXPIRATION_DATE),
    (("Passport No", "Pasaport No"), ID_NUMBER),
)
PASSPORT_MARKERS = ("PASSPORT", "PASAPORTE", "PASSEPORT", "SURNAME")

# Formatos de número de licencia/documento (los solo-dígitos primero, de mayor a menor)
ID_NUMBER_FORMATS = "|".join([
    r"\b[0-9]{13}\b",
    r"\b[0-9]{12}\b",
    r"\b[0-9]{9}\b",
    r"\b[0-9]{8}\b",
    r"\b[A-Za-z]\d{3}-\d{4}-\d{4}\b",
    r"\b[A-Za-z]?\d{2}-\d{3}-\d{4}\b",
    r"\b[A-Za-z]?\d{3}-\d{2}-\d{4}\b",
    r"\b[A-Za-z]\d{12}\b",
    r"\b[A-Za-z]\d{8,9}\b",
    r"\b[A-Za-z]\d{7}\b",
    r"\b[0-9]{3} [0-9]{3} [0-9]{3}\b",
    r"\b[A-Za-z]{3}-[0-9]{2}-[0-9]{4}\b",
])
_ID_NUMBER_RE = re.compile(ID_NUMBER_FORMATS)
_LEADING_KEYS_RE = re.compile(r"^(?:.*?:\s*)*")


def split_multi_colon(text: str) -> List[str]:
    """'FN: JOHN LN: DOE' -> ['FN: JOHN', 'LN: DOE']."""
    segments: List[str] = []
    current = ""
    for part in text.split(" "):
        if ":" in part and current.strip():
            segments.append(current.strip())
            current = part
        else:
            current = f"{current} {part}"
    if current.strip():
        segments.append(current.strip())
    return segments


def _segments(lines: Iterable[str]) -> List[str]:
    return [seg for line in lines for seg in split_multi_colon(line)]


def _license_fields(lines: List[str], out: Dict[str, str]) -> None:
    for seg in _segments(lines):
        m = _LICENSE_RE.search(seg)
        if not m:
            continue
        field = LICENSE_KEYS[m.group(1).upper()]
        value = m.group(2).strip()
        if not value:
            continue
        if field in (DATE_OF_BIRTH, EXPIRATION_DATE) and parse_date(value) is None:
            continue
        out[field] = value


def _passport_fields(lines: List[str], out: Dict[str, str]) -> None:
    mrz = ""
    current: Optional[str] = None
    for raw in lines:
        text = raw.strip()
        label = next((f for names, f in PASSPORT_LABELS if any(n in text for n in names)), None)
        if label:
            current = label
        elif text.startswith("P<") or ("USA" in text and "<" in text):
            mrz = text
        elif current and "/" not in text:
            if current not in (DATE_OF_BIRTH, EXPIRATION_DATE) or parse_date(text) is not None:
                out[current] = text
            current = None

    if ID_NUMBER not in out and mrz:
        head = mrz.split("USA")[0]
        number = head[-9:] if mrz.startswith("P<") else head[:9]
        if number:
            out[ID_NUMBER] = number


def _unknown_fields(lines: List[str], out: Dict[str, str]) -> None:
    cleaned = [_LEADING_KEYS_RE.sub("", seg) for seg in _segments(lines)]

    if ID_NUMBER not in out:
        for text in cleaned:
            m = _ID_NUMBER_RE.search(DATE_PATTERN.sub("", text, count=1))
            if m:
                out[ID_NUMBER] = m.group(0).strip()
                break

    if DATE_OF_BIRTH not in out or EXPIRATION_DATE not in out:
        found = sorted(d for text in cleaned for d in find_dates(text))
        if found:
            if DATE_OF_BIRTH not in out:
                out[DATE_OF_BIRTH] = found[0].isoformat()
            if EXPIRATION_DATE not in out and len(found) > 1:
                out[EXPIRATION_DATE] = found[-1].isoformat()


def parse_id_lines(lines: Iterable[str]) -> Dict[str, str]:
    lines = [str(l) for l in lines if l and str(l).strip()]
    out: Dict[str, str] = {}
    head = [l.upper() for l in lines[:5]]
    if any("LICENSE" in l for l in head):
        _license_fields(lines, out)
    elif any(marker in l for l in head for marker in PASSPORT_MARKERS):
        _passport_fields(lines, out)
    _unknown_fields(lines, out)
    return out
