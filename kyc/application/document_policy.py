# kyc/application/document_policy.py
"""
Política de documento: fechas, campos canónicos y decisión de edad.

La decisión combina el resultado del match selfie/foto del documento con las fechas
leídas del documento:

    match fallido                 -> PROFILE_MISMATCH  (is_above = None)
    sin fecha de nacimiento o exp -> SELFIE_INACCURATE (is_above = None)
    documento vencido             -> EXPIRED_ID        (is_above = False)
    edad >= umbral                -> ABOVE_21          (is_above = True)
    en otro caso                  -> BELOW_21          (is_above = False)
"""
import datetime
import re
from typing import Dict, List, Mapping, Optional, Tuple

from ..domain.value_objects import AgeVerificationResult, DocumentIdentity

FIRST_NAME = "firstName"
LAST_NAME = "lastName"
ID_NUMBER = "idNumber"
DATE_OF_BIRTH = "dateOfBirth"
EXPIRATION_DATE = "expirationDate"

# Claves de Textract AnalyzeID / lectores OCR -> claves canónicas
FIELD_ALIASES: Dict[str, str] = {
    "FIRST_NAME": FIRST_NAME,
    "FN": FIRST_NAME,
    "LAST_NAME": LAST_NAME,
    "LN": LAST_NAME,
    "DOCUMENT_NUMBER": ID_NUMBER,
    "DL": ID_NUMBER,
    "DATE_OF_BIRTH": DATE_OF_BIRTH,
    "DOB": DATE_OF_BIRTH,
    "EXPIRATION_DATE": EXPIRATION_DATE,
    "EXP": EXPIRATION_DATE,
}

DATE_PATTERN = re.compile(
    r"\d{1,2}/\d{1,2}/\d{4}"
    r"|\d{4}-\d{1,2}-\d{1,2}"
    r"|\d{1,2}-\d{1,2}-\d{4}"
    r"|\d{1,2} [A-Za-z]{3} \d{4}"
)

# Orden de prueba: el primero que parsea gana (DD-MM antes que MM-DD)
DATE_FORMATS = (
    "%m/%d/%Y",
    "%Y-%m-%d",
    "%d-%m-%Y",
    "%m-%d-%Y",
    "%d %b %Y",
)


def _parse_token(token: str) -> Optional[datetime.date]:
    for fmt in DATE_FORMATS:
        try:
            return datetime.datetime.strptime(token, fmt).date()
        except ValueError:
            continue
    return None


def find_dates(text: str) -> List[datetime.date]:
    """Todas las fechas válidas que aparecen en el texto, en orden de aparición."""
    out: List[datetime.date] = []
    for token in DATE_PATTERN.findall(text or ""):
        d = _parse_token(token)
        if d is not None:
            out.append(d)
    return out


def parse_date(text: Optional[str]) -> Optional[datetime.date]:
    """Última fecha reconocible del texto ("DOB: 01/02/1990" -> 1990-01-02)."""
    dates = find_dates(text or "")
    return dates[-1] if dates else None


def canonical_fields(fields: Mapping[str, str]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for key, value in (fields or {}).items():
        if value is None:
            continue
        value = str(value).strip()
        if not value:
            continue
        canon = FIELD_ALIASES.get(str(key).strip().upper(), key)
        out.setdefault(canon, value)
    return out


def identity_from_fields(fields: Mapping[str, str]) -> DocumentIdentity:
    f = canonical_fields(fields)
    dob = parse_date(f.get(DATE_OF_BIRTH))
    exp = parse_date(f.get(EXPIRATION_DATE))

    if dob is None or exp is None:
        # fallback: la fecha más antigua es nacimiento, la más reciente vencimiento
        found = sorted(d for value in f.values() for d in find_dates(value))
        if found:
            if dob is None:
                dob = found[0]
            if exp is None and len(found) > 1:
                exp = found[-1]

    return DocumentIdentity(
        first_name=f.get(FIRST_NAME),
        last_name=f.get(LAST_NAME),
        id_number=f.get(ID_NUMBER),
        date_of_birth=dob,
        expiration_date=exp,
    )


def evaluate_age(
    identity: DocumentIdentity,
    match_passed: bool,
    today: Optional[datetime.date] = None,
    age_threshold: int = 21,
) -> Tuple[AgeVerificationResult, Optional[bool]]:
    if not match_passed:
        return AgeVerificationResult.PROFILE_MISMATCH, None

    today = today or datetime.date.today()
    age = identity.age_on(today)
    expired = identity.is_expired_on(today)
    if age is None or expired is None:
        return AgeVerificationResult.SELFIE_INACCURATE, None
    if expired:
        return AgeVerificationResult.EXPIRED_ID, False
    if age >= age_threshold:
        return AgeVerificationResult.ABOVE_21, True
    return AgeVerificationResult.BELOW_21, False
