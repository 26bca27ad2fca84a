"""
Record normalizer.

Turns a raw spreadsheet row or a raw provider transaction into a
DraftTransaction. Validation problems raise ValidationError for that record
only; the caller decides how to account for it.

Field lookup is forgiving about header spelling: "Major Category",
"major_category" and "majorCategory" all address the same field.
"""

import re
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from ..errors import ValidationError
from .records import CategoryKey, DraftTransaction, Flow, MajorCategory, SourceKind

GENERIC_DESCRIPTION = "Bank transaction"

# Spreadsheet serial dates count days from this epoch (1900 leap-year bug included)
EXCEL_EPOCH = date(1899, 12, 30)

_DAY_FIRST_FORMATS = ("%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y")

# Provider description chain, first non-empty wins
_PROVIDER_DESCRIPTION_FIELDS = (
    "remittanceInformationUnstructured",
    "remittanceInformationUnstructuredArray",
    "remittanceInformationStructured",
    "remittanceInformationStructuredArray",
    "creditorName",
    "debtorName",
    "additionalInformation",
)


def _key(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", name.lower())


def get_field(raw: dict[str, Any], *names: str) -> Any:
    """Return the first non-blank value among the given field names."""
    index = {_key(k): v for k, v in raw.items() if isinstance(k, str)}
    for name in names:
        value = index.get(_key(name))
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        value = " ".join(str(v).strip() for v in value if str(v).strip())
    text = str(value).strip()
    return text or None


def parse_date(value: Any, allow_serial: bool = True) -> date:
    """
    Parse a record date into a calendar date.

    Accepted:
    - date / datetime objects (the calendar fields are taken as-is)
    - ISO strings, optionally with a time suffix ("2024-03-01T23:30:00+05:00")
    - day-first strings (DD/MM/YYYY, DD-MM-YYYY, DD.MM.YYYY)
    - spreadsheet serial day numbers (when allow_serial)

    Raises:
        ValidationError: If the value is missing or unparseable.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError("Date is required", field="date")

    # datetime is a subclass of date, check it first
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    if allow_serial and isinstance(value, (int, float)) and not isinstance(value, bool):
        return _from_serial(value)

    text = str(value).strip()
    if allow_serial and re.fullmatch(r"\d+(\.\d+)?", text):
        return _from_serial(float(text))

    # Time and offset suffixes are dropped, never applied
    iso_match = re.match(r"^(\d{4}-\d{2}-\d{2})", text)
    if iso_match:
        try:
            return date.fromisoformat(iso_match.group(1))
        except ValueError:
            raise ValidationError(f"Invalid date {text!r}", field="date") from None

    for fmt in _DAY_FIRST_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    raise ValidationError(
        f"Invalid date format {text!r} (use YYYY-MM-DD or DD/MM/YYYY)", field="date"
    )


def _from_serial(serial: float) -> date:
    if serial < 1 or serial > 2958465:
        raise ValidationError(f"Date serial out of range: {serial}", field="date")
    return EXCEL_EPOCH + timedelta(days=int(serial))


def parse_amount(value: Any, field: str = "amount") -> Decimal:
    """
    Parse a money amount into a Decimal with two places.

    Accepts numbers and strings with either "." or "," as the decimal
    separator ("1.234,56", "1,234.56", "-50.00").

    Raises:
        ValidationError: If the value is missing or not a number.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError("Amount is required", field=field)
    if isinstance(value, bool):
        raise ValidationError(f"Invalid amount {value!r}", field=field)

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(str(value))
    else:
        text = re.sub(r"[\s€$£]", "", str(value))
        if "," in text and "." in text:
            if text.rfind(",") > text.rfind("."):
                text = text.replace(".", "").replace(",", ".")
            else:
                text = text.replace(",", "")
        elif "," in text:
            text = text.replace(",", ".")
        try:
            amount = Decimal(text)
        except InvalidOperation:
            raise ValidationError(f"Invalid amount {value!r}", field=field) from None

    if not amount.is_finite():
        raise ValidationError(f"Invalid amount {value!r}", field=field)
    return amount.quantize(Decimal("0.01"))


def _is_blank_amount(value: Any) -> bool:
    # Some templates fill the unused amount column with 0
    if value is None:
        return True
    try:
        return parse_amount(value) == 0
    except ValidationError:
        return False


def parse_flow(raw: dict[str, Any]) -> Flow:
    """Read the Flow column of a row."""
    flow_value = get_field(raw, "Flow")
    if flow_value is None:
        raise ValidationError("Flow is required", field="flow")
    try:
        return Flow.parse(flow_value)
    except ValueError as e:
        raise ValidationError(str(e), field="flow") from None


def _parse_major(value: Any) -> MajorCategory:
    try:
        return MajorCategory.parse(value)
    except ValueError as e:
        raise ValidationError(str(e), field="major_category") from None


def parse_category_key(raw: dict[str, Any]) -> CategoryKey:
    """Read (Flow, Major Category, Category, Sub Category) from a row.

    Raises:
        ValidationError: If any component is missing or unknown.
    """
    flow = parse_flow(raw)

    major_value = get_field(raw, "Major Category")
    if major_value is None:
        raise ValidationError("Major Category is required", field="major_category")
    major = _parse_major(major_value)

    category = _text(get_field(raw, "Category"))
    if not category:
        raise ValidationError("Category is required", field="category")
    sub_category = _text(get_field(raw, "Sub Category", "Subcategory"))
    if not sub_category:
        raise ValidationError("Sub Category is required", field="sub_category")

    return CategoryKey(flow, major, category, sub_category)


def parse_optional_category_key(raw: dict[str, Any], flow: Flow) -> CategoryKey | None:
    """Category of a transactions row, or None when the row leaves it blank.

    A partially filled category is treated as blank, but a major category
    that is given must be a known one.
    """
    major_value = get_field(raw, "Major Category")
    major = _parse_major(major_value) if major_value is not None else None
    category = _text(get_field(raw, "Category"))
    sub_category = _text(get_field(raw, "Sub Category", "Subcategory"))
    if major is None or not category or not sub_category:
        return None
    return CategoryKey(flow, major, category, sub_category)


def parse_name(raw: dict[str, Any]) -> str:
    """Read the Name column of an origins or banks row."""
    name = _text(get_field(raw, "Name"))
    if not name:
        raise ValidationError("Name is required", field="name")
    return name


def describe(raw: dict[str, Any], *preferred: str) -> str:
    """Apply the description fallback chain; never returns an empty string."""
    for name in (*preferred, *_PROVIDER_DESCRIPTION_FIELDS, "Notes"):
        text = _text(get_field(raw, name))
        if text:
            return text
    return GENERIC_DESCRIPTION


def _normalize_spreadsheet(raw: dict[str, Any]) -> DraftTransaction:
    txn_date = parse_date(get_field(raw, "Date"))
    flow = parse_flow(raw)
    category = parse_optional_category_key(raw, flow)

    income = get_field(raw, "Income Amount")
    outgoing = get_field(raw, "Outgoing Amount")
    if flow == Flow.INFLOW:
        if not _is_blank_amount(outgoing):
            raise ValidationError(
                "Outgoing Amount should be empty for INFLOW rows", field="outgoing_amount"
            )
        amount = parse_amount(income, field="income_amount")
    else:
        if not _is_blank_amount(income):
            raise ValidationError(
                "Income Amount should be empty for OUTFLOW rows", field="income_amount"
            )
        amount = parse_amount(outgoing, field="outgoing_amount")
    if amount < 0:
        raise ValidationError("Amounts must not be negative", field="amount")

    origin = _text(get_field(raw, "Origin"))
    if not origin:
        raise ValidationError("Origin is required", field="origin")
    bank = _text(get_field(raw, "Bank"))
    if not bank:
        raise ValidationError("Bank is required", field="bank")

    return DraftTransaction(
        date=txn_date,
        flow=flow,
        amount=amount,
        description=describe(raw, "Description"),
        origin=origin,
        bank=bank,
        source_kind=SourceKind.SPREADSHEET,
        category=category,
        notes=_text(get_field(raw, "Notes")),
        external_id=None,
        raw_payload=jsonable(raw),
    )


def _normalize_provider(
    raw: dict[str, Any],
    origin: str | None,
    bank: str | None,
    account_id: str | None,
) -> DraftTransaction:
    external_id = _text(get_field(raw, "transactionId", "internalTransactionId"))
    if not external_id:
        raise ValidationError("Provider transaction has no identifier", field="transaction_id")

    booked = get_field(raw, "bookingDate", "valueDate", "bookingDateTime", "valueDateTime")
    txn_date = parse_date(booked, allow_serial=False)

    amount_block = raw.get("transactionAmount")
    raw_amount = amount_block.get("amount") if isinstance(amount_block, dict) else None
    if raw_amount is None:
        raw_amount = get_field(raw, "amount")
    signed = parse_amount(raw_amount)

    if not origin:
        raise ValidationError("Origin is required", field="origin")
    if not bank:
        raise ValidationError("Bank is required", field="bank")

    return DraftTransaction(
        date=txn_date,
        flow=Flow.from_amount(signed),
        amount=abs(signed),
        description=describe(raw),
        origin=origin,
        bank=bank,
        source_kind=SourceKind.PROVIDER_SYNC,
        notes=_text(get_field(raw, "additionalInformation")),
        external_id=external_id,
        account_id=account_id,
        raw_payload=jsonable(raw),
    )


def normalize(
    raw: dict[str, Any],
    source_kind: SourceKind,
    *,
    origin: str | None = None,
    bank: str | None = None,
    account_id: str | None = None,
) -> DraftTransaction:
    """
    Normalize one raw record.

    Args:
        raw: Spreadsheet row (column -> value) or provider transaction JSON
        source_kind: Where the record came from
        origin: Origin name for provider records (account owner)
        bank: Bank name for provider records (institution)
        account_id: Provider account the record belongs to

    Returns:
        DraftTransaction

    Raises:
        ValidationError: If a mandatory field is missing or malformed
    """
    if not isinstance(raw, dict):
        raise ValidationError(f"Record must be a mapping, got {type(raw).__name__}")
    if source_kind == SourceKind.SPREADSHEET:
        return _normalize_spreadsheet(raw)
    return _normalize_provider(raw, origin, bank, account_id)


def jsonable(raw: dict[str, Any]) -> dict[str, Any]:
    """Copy a raw record so that it can be stored as JSON."""
    result: dict[str, Any] = {}
    for key, value in raw.items():
        if isinstance(value, (date, datetime)):
            result[str(key)] = value.isoformat()
        elif isinstance(value, Decimal):
            result[str(key)] = str(value)
        elif isinstance(value, dict):
            result[str(key)] = jsonable(value)
        else:
            result[str(key)] = value
    return result
