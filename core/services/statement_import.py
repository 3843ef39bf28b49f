"""
Bank statement import.

Turns delimited statement rows into BankTransaction rows using a caller-supplied
column mapping. Bad rows are skipped with a reason; rows already on file are
counted as duplicates. The (business, date, normalized_description, amount,
direction) unique constraint is the source of truth for duplicates, so two
imports of overlapping files running at the same time cannot double-insert.

Column mapping keys:
    date, description       required
    amount                  signed amount column, or
    debit + credit          two unsigned columns (money out / money in)
    reference               optional
    date_formats            optional list of strptime formats to try
"""

from __future__ import annotations

import csv
import io
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Mapping, Optional

from django.conf import settings
from django.db import IntegrityError, transaction

from core.exceptions import DuplicateTransaction, ParseError
from core.models import CENT, BankStatementImport, BankTransaction

logger = logging.getLogger(__name__)

ISO_DATE_FORMAT = "%Y-%m-%d"
_AMOUNT_JUNK_RE = re.compile(r"[^-\d.]")


@dataclass(frozen=True)
class ParsedRow:
    date: date
    description: str
    normalized_description: str
    amount: Decimal
    direction: str
    reference: str = ""

    @property
    def dedup_key(self) -> tuple:
        return (self.date, self.normalized_description, self.amount, self.direction)


@dataclass
class ImportResult:
    imported: int = 0
    duplicates: int = 0
    skipped: int = 0
    errors: list[dict] = field(default_factory=list)
    statement_import_id: Optional[int] = None

    def as_dict(self) -> dict:
        return {
            "imported": self.imported,
            "duplicates": self.duplicates,
            "skipped": self.skipped,
            "errors": self.errors,
            "statement_import_id": self.statement_import_id,
        }


def parse_amount(raw) -> Decimal:
    """
    Parse a statement amount: currency symbols and thousand separators are
    dropped, "(250.00)" and "250.00-" mean -250.00.
    """
    if raw is None:
        raise ParseError("Missing amount")
    if isinstance(raw, (int, Decimal)):
        return Decimal(raw)
    text = str(raw).strip()
    if not text:
        raise ParseError("Missing amount")
    negative = text.startswith("(") and text.endswith(")")
    body = text
    if body.endswith("-"):
        negative, body = True, body[:-1]
    cleaned = _AMOUNT_JUNK_RE.sub("", body)
    try:
        value = Decimal(cleaned)
    except InvalidOperation as exc:
        raise ParseError(f"Invalid amount '{text}'") from exc
    if not value.is_finite():
        raise ParseError(f"Invalid amount '{text}'")
    return -abs(value) if negative else value


def parse_date(raw, formats: Iterable[str]) -> date:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    text = str(raw or "").strip()
    if not text:
        raise ParseError("Missing date")
    for fmt in formats:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ParseError(f"Invalid date '{text}'")


def _date_formats(mapping: Mapping) -> list[str]:
    configured = mapping.get("date_formats") or getattr(settings, "BANK_IMPORT_DATE_FORMATS", [])
    return [ISO_DATE_FORMAT, *[fmt for fmt in configured if fmt != ISO_DATE_FORMAT]]


def _validate_mapping(mapping: Mapping) -> None:
    missing = [key for key in ("date", "description") if not mapping.get(key)]
    has_signed = bool(mapping.get("amount"))
    has_split = bool(mapping.get("debit")) or bool(mapping.get("credit"))
    if not (has_signed or has_split):
        missing.append("amount")
    if missing:
        raise ParseError(f"Column mapping is missing: {', '.join(missing)}")


def _cell(row: Mapping, column: Optional[str]):
    if not column:
        return None
    if column in row:
        return row[column]
    wanted = column.strip().lower()
    for key, value in row.items():
        if key and str(key).strip().lower() == wanted:
            return value
    return None


def _row_amount(row: Mapping, mapping: Mapping) -> Decimal:
    if mapping.get("amount"):
        return parse_amount(_cell(row, mapping["amount"]))
    debit_raw = _cell(row, mapping.get("debit"))
    credit_raw = _cell(row, mapping.get("credit"))
    if not (str(debit_raw or "").strip() or str(credit_raw or "").strip()):
        raise ParseError("Missing amount")
    debit = parse_amount(debit_raw) if str(debit_raw or "").strip() else Decimal("0")
    credit = parse_amount(credit_raw) if str(credit_raw or "").strip() else Decimal("0")
    return abs(credit) - abs(debit)


def parse_row(row: Mapping, mapping: Mapping, date_formats: Iterable[str]) -> ParsedRow:
    date_raw = _cell(row, mapping["date"])
    description = str(_cell(row, mapping["description"]) or "").strip()
    if not str(date_raw or "").strip():
        raise ParseError("Missing date")
    if not description:
        raise ParseError("Missing description")

    tx_date = parse_date(date_raw, date_formats)
    signed = _row_amount(row, mapping).quantize(CENT, rounding=ROUND_HALF_UP)
    if signed == 0:
        raise ParseError("Zero amount")

    reference = str(_cell(row, mapping.get("reference")) or "").strip()
    max_description = BankTransaction._meta.get_field("description").max_length
    description = description[:max_description]
    return ParsedRow(
        date=tx_date,
        description=description,
        normalized_description=BankTransaction.normalize_description(description),
        amount=abs(signed),
        direction=BankTransaction.Direction.CREDIT if signed >= 0 else BankTransaction.Direction.DEBIT,
        reference=reference[:255],
    )


def _dedup_key_exists(business, parsed: ParsedRow) -> bool:
    # Soft-deleted rows still count, so a deleted line does not come back on re-import.
    return BankTransaction.objects.filter(
        business=business,
        date=parsed.date,
        normalized_description=parsed.normalized_description,
        amount=parsed.amount,
        direction=parsed.direction,
    ).exists()


def _insert(business, statement_import, parsed: ParsedRow) -> BankTransaction:
    if _dedup_key_exists(business, parsed):
        raise DuplicateTransaction(f"{parsed.date} {parsed.description} {parsed.amount} is already imported")
    try:
        with transaction.atomic():
            return BankTransaction.objects.create(
                business=business,
                statement_import=statement_import,
                date=parsed.date,
                description=parsed.description,
                normalized_description=parsed.normalized_description,
                amount=parsed.amount,
                direction=parsed.direction,
                reference=parsed.reference,
            )
    except IntegrityError as exc:
        # Another import inserted the same key after our pre-check.
        raise DuplicateTransaction(f"{parsed.date} {parsed.description} {parsed.amount} is already imported") from exc


def import_transactions(
    business,
    actor,
    rows: Iterable[Mapping],
    column_mapping: Mapping,
    *,
    file_name: str = "",
) -> ImportResult:
    """Import statement rows. Returns counts; never raises for a bad row."""
    _validate_mapping(column_mapping)
    date_formats = _date_formats(column_mapping)

    statement_import = BankStatementImport.objects.create(
        business=business,
        file_name=file_name or "",
        status=BankStatementImport.ImportStatus.PROCESSING,
        created_by=actor if getattr(actor, "pk", None) else None,
    )
    result = ImportResult(statement_import_id=statement_import.pk)
    seen_in_file = set()

    try:
        for row_number, row in enumerate(rows, start=1):
            try:
                parsed = parse_row(row, column_mapping, date_formats)
            except ParseError as exc:
                result.skipped += 1
                result.errors.append({"row": row_number, "error": exc.reason})
                continue

            if parsed.dedup_key in seen_in_file:
                result.duplicates += 1
                continue
            seen_in_file.add(parsed.dedup_key)

            try:
                _insert(business, statement_import, parsed)
            except DuplicateTransaction:
                result.duplicates += 1
                continue
            result.imported += 1
    except Exception:
        statement_import.status = BankStatementImport.ImportStatus.FAILED
        statement_import.imported_count = result.imported
        statement_import.duplicate_count = result.duplicates
        statement_import.skipped_count = result.skipped
        statement_import.errors = result.errors
        statement_import.save(
            update_fields=["status", "imported_count", "duplicate_count", "skipped_count", "errors"]
        )
        logger.exception("bank statement import %s failed", statement_import.pk)
        raise

    statement_import.status = BankStatementImport.ImportStatus.COMPLETED
    statement_import.imported_count = result.imported
    statement_import.duplicate_count = result.duplicates
    statement_import.skipped_count = result.skipped
    statement_import.errors = result.errors
    statement_import.save(update_fields=["status", "imported_count", "duplicate_count", "skipped_count", "errors"])
    logger.info(
        "bank statement import %s for business %s: imported=%d duplicates=%d skipped=%d",
        statement_import.pk,
        business.pk,
        result.imported,
        result.duplicates,
        result.skipped,
    )
    return result


def read_statement_rows(fileobj, delimiter: Optional[str] = None) -> list[dict]:
    """Read a delimited statement file into dict rows keyed by header."""
    content = fileobj.read()
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ParseError("Statement file is not UTF-8 text") from exc
    content = content.lstrip("\ufeff")
    if not content.strip():
        return []

    if delimiter is None:
        try:
            delimiter = csv.Sniffer().sniff(content[:4096], delimiters=",;\t|").delimiter
        except csv.Error:
            delimiter = ","

    reader = csv.DictReader(io.StringIO(content), delimiter=delimiter)
    rows = []
    for row in reader:
        rows.append(
            {
                (key or "").strip(): value.strip() if isinstance(value, str) else value
                for key, value in row.items()
            }
        )
    return rows
