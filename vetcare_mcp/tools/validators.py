"""Field validators and normalisers for tool arguments.

Every validator takes the raw value and either returns the normalised
value or raises :class:`~vetcare_mcp.errors.ToolValidationError` with a
message the calling agent can act on.  They run before any network call.

The ``Annotated`` aliases at the bottom plug the validators into the
pydantic argument models declared by each tool.
"""

from __future__ import annotations

import math
import re
import time
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from functools import partial
from typing import Annotated, Any

from pydantic import AfterValidator, BeforeValidator, Field

from vetcare_mcp.errors import ToolValidationError

_NON_DIGITS = re.compile(r"\D")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATE_TIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

COUNTRY_CODE = "55"
PHONE_LENGTHS = (10, 11)  # landline / mobile, area code included

SEXES = ("M", "F")
APPOINTMENT_STATUSES = (
    "Agendado", "Confirmado", "Em Atendimento", "Concluído", "Cancelado", "Faltou",
)
APPOINTMENT_TYPES = ("Consulta", "Retorno", "Emergência", "Cirurgia")
PAYMENT_METHODS = ("Dinheiro", "Cartão", "PIX", "Boleto", "Cheque", "Crediário")

_APPOINTMENT_TYPE_ALIASES = {
    "Consulta Veterinária Básica": "Consulta",
    "Consulta Veterinária Completa": "Consulta",
    "Consulta de Retorno": "Retorno",
    "Atendimento de Emergência": "Emergência",
}
_APPOINTMENT_TYPE_KEYWORDS = (
    ("consulta", "Consulta"),
    ("retorno", "Retorno"),
    ("emergência", "Emergência"),
    ("emergencia", "Emergência"),
    ("cirurgia", "Cirurgia"),
)


def digits_only(value: str) -> str:
    return _NON_DIGITS.sub("", value or "")


# ── Phone ────────────────────────────────────────────────────────────


def phone(value: str) -> str:
    """Normalise a Brazilian phone number to its 10/11 national digits.

    ``"+55 11 98888-7777"`` → ``"11988887777"``.
    """
    digits = digits_only(value)
    if digits.startswith(COUNTRY_CODE) and len(digits) > max(PHONE_LENGTHS):
        digits = digits[len(COUNTRY_CODE):]
    if len(digits) not in PHONE_LENGTHS:
        raise ToolValidationError(
            f'Invalid phone number "{value}". It must have 10 or 11 digits '
            "(area code included, country code optional)."
        )
    return digits


def format_phone(digits: str) -> str:
    """Render national digits as ``(11) 98888-7777`` / ``(11) 3888-7777``."""
    if len(digits) == 11:
        return f"({digits[:2]}) {digits[2:7]}-{digits[7:]}"
    if len(digits) == 10:
        return f"({digits[:2]}) {digits[2:6]}-{digits[6:]}"
    return digits


# ── CPF (Brazilian tax ID) ──────────────────────────────────────────


def cpf_check_digits(base: str) -> str:
    """Return the two mod-11 check digits for a 9-digit CPF base."""
    if len(base) != 9 or not base.isdigit():
        raise ValueError("CPF base must be exactly 9 digits")

    def _digit(numbers: str) -> str:
        weight = len(numbers) + 1
        total = sum(int(n) * (weight - i) for i, n in enumerate(numbers))
        remainder = 11 - total % 11
        return "0" if remainder > 9 else str(remainder)

    first = _digit(base)
    return first + _digit(base + first)


def is_valid_cpf(value: str) -> bool:
    digits = digits_only(value)
    if len(digits) != 11 or len(set(digits)) == 1:
        return False
    return cpf_check_digits(digits[:9]) == digits[9:]


def format_cpf(digits: str) -> str:
    return f"{digits[:3]}.{digits[3:6]}.{digits[6:9]}-{digits[9:]}"


def cpf(value: str) -> str:
    """Validate a CPF and return it formatted as ``000.000.000-00``."""
    if not is_valid_cpf(value):
        raise ToolValidationError(f'Invalid CPF "{value}": check digits do not match.')
    return format_cpf(digits_only(value))


def generate_cpf(seed: int | None = None) -> str:
    """Build a placeholder CPF with valid check digits for clients without one.

    The base is the last nine digits of *seed* (default: current time in ms).
    """
    seed = int(time.time() * 1000) if seed is None else seed
    base = str(seed)[-9:].rjust(9, "0")
    if len(set(base)) == 1:
        base = base[:-1] + str((int(base[-1]) + 1) % 10)
    return format_cpf(base + cpf_check_digits(base))


# ── Email ────────────────────────────────────────────────────────────


def email(value: str) -> str:
    value = (value or "").strip()
    if not _EMAIL_RE.match(value):
        raise ToolValidationError(f'Invalid email address "{value}".')
    return value.lower()


# ── Dates ────────────────────────────────────────────────────────────


def date(value: str) -> str:
    """Accept ``YYYY-MM-DD`` naming a real calendar day."""
    if not _DATE_RE.match(value or ""):
        raise ToolValidationError(f'Invalid date "{value}". Use the format YYYY-MM-DD.')
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise ToolValidationError(f'Invalid date "{value}": no such calendar day.') from None
    return value


def date_time(value: str) -> str:
    """Accept ``YYYY-MM-DD HH:MM:SS`` naming a real instant."""
    if not _DATE_TIME_RE.match(value or ""):
        raise ToolValidationError(
            f'Invalid date/time "{value}". Use the format YYYY-MM-DD HH:MM:SS.'
        )
    try:
        datetime.strptime(value, "%Y-%m-%d %H:%M:%S")
    except ValueError:
        raise ToolValidationError(f'Invalid date/time "{value}": out of range.') from None
    return value


# ── Enumerations ─────────────────────────────────────────────────────


def choice(value: str, allowed: tuple[str, ...], label: str) -> str:
    if value not in allowed:
        raise ToolValidationError(
            f'Invalid {label} "{value}". Accepted values: {", ".join(allowed)}.'
        )
    return value


def sex(value: str) -> str:
    return choice((value or "").strip().upper(), SEXES, "sex")


def appointment_type(value: str | None) -> str:
    """Map free-text service names onto the upstream appointment types."""
    if not value:
        return "Consulta"
    if value in APPOINTMENT_TYPES:
        return value
    if value in _APPOINTMENT_TYPE_ALIASES:
        return _APPOINTMENT_TYPE_ALIASES[value]
    lowered = value.lower()
    for keyword, mapped in _APPOINTMENT_TYPE_KEYWORDS:
        if keyword in lowered:
            return mapped
    return "Consulta"


# ── Money ────────────────────────────────────────────────────────────


def currency(value: Any) -> float:
    """Round to two decimals; reject negatives and anything non-numeric."""
    if isinstance(value, bool):
        raise ToolValidationError(f"Invalid amount {value!r}: not a number.")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ToolValidationError(f"Invalid amount {value!r}: not a number.") from None
    if not amount.is_finite() or math.isnan(float(amount)):
        raise ToolValidationError(f"Invalid amount {value!r}: not a finite number.")
    if amount < 0:
        raise ToolValidationError(f"Invalid amount {value!r}: cannot be negative.")
    try:
        rounded = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ToolValidationError(f"Invalid amount {value!r}: too large.") from None
    return float(rounded)


# ── Search ───────────────────────────────────────────────────────────


def search_term(value: str, min_length: int) -> str:
    """Require a non-empty search term of at least *min_length* characters."""
    term = (value or "").strip()
    if len(term) < min_length:
        raise ToolValidationError(
            f"A search term of at least {min_length} characters is required "
            "(full listings are never returned)."
        )
    return term


# ── pydantic field types ─────────────────────────────────────────────

PhoneNumber = Annotated[str, AfterValidator(phone)]
CPF = Annotated[str, AfterValidator(cpf)]
Email = Annotated[str, AfterValidator(email)]
ISODate = Annotated[str, AfterValidator(date)]
DateTime = Annotated[str, AfterValidator(date_time)]
Sex = Annotated[str, AfterValidator(sex)]
Money = Annotated[float, BeforeValidator(currency)]
AppointmentStatus = Annotated[
    str, AfterValidator(partial(choice, allowed=APPOINTMENT_STATUSES, label="appointment status")),
]
PaymentMethod = Annotated[
    str, AfterValidator(partial(choice, allowed=PAYMENT_METHODS, label="payment method")),
]
AppointmentType = Annotated[str, AfterValidator(appointment_type)]
SearchTerm2 = Annotated[str, AfterValidator(partial(search_term, min_length=2))]
SearchTerm3 = Annotated[str, AfterValidator(partial(search_term, min_length=3))]
RecordId = Annotated[int, Field(gt=0)]
