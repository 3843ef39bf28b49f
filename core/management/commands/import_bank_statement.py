"""
Import a delimited bank statement file for one business.

USAGE:
    python manage.py import_bank_statement 1 statement.csv \
        --date-col Date --description-col Description --amount-col Amount

    Statements with separate money-out / money-in columns:
    python manage.py import_bank_statement 1 statement.csv \
        --date-col Date --description-col Details --debit-col Debit --credit-col Credit

Re-running the same file is safe: rows already imported count as duplicates.
"""

from pathlib import Path

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError

from core.exceptions import ParseError
from core.models import Business
from core.services import import_transactions, read_statement_rows


class Command(BaseCommand):
    help = "Import bank statement lines from a CSV/TSV file into a business."

    def add_arguments(self, parser):
        parser.add_argument("business_id", type=int)
        parser.add_argument("path", help="Path to the delimited statement file.")
        parser.add_argument("--date-col", required=True)
        parser.add_argument("--description-col", required=True)
        parser.add_argument("--amount-col", help="Signed amount column.")
        parser.add_argument("--debit-col", help="Money-out column (use with --credit-col).")
        parser.add_argument("--credit-col", help="Money-in column (use with --debit-col).")
        parser.add_argument("--reference-col")
        parser.add_argument("--delimiter", help="Column delimiter; sniffed from the file when omitted.")
        parser.add_argument("--date-format", action="append", dest="date_formats", help="Extra strptime format.")
        parser.add_argument("--user", help="Username recorded as the importer.")

    def handle(self, *args, **options):
        business = Business.objects.filter(pk=options["business_id"], is_deleted=False).first()
        if business is None:
            raise CommandError(f"Business {options['business_id']} does not exist.")

        path = Path(options["path"])
        if not path.is_file():
            raise CommandError(f"File not found: {path}")

        actor = None
        if options.get("user"):
            actor = get_user_model().objects.filter(username=options["user"]).first()
            if actor is None:
                raise CommandError(f"User '{options['user']}' does not exist.")

        mapping = {
            "date": options["date_col"],
            "description": options["description_col"],
            "amount": options.get("amount_col"),
            "debit": options.get("debit_col"),
            "credit": options.get("credit_col"),
            "reference": options.get("reference_col"),
        }
        if options.get("date_formats"):
            mapping["date_formats"] = options["date_formats"]

        with path.open("r", encoding="utf-8-sig", newline="") as fh:
            rows = read_statement_rows(fh, delimiter=options.get("delimiter"))

        try:
            result = import_transactions(business, actor, rows, mapping, file_name=path.name)
        except ParseError as exc:
            raise CommandError(exc.reason) from exc

        self.stdout.write(
            self.style.SUCCESS(
                f"Imported {result.imported}, duplicates {result.duplicates}, skipped {result.skipped}."
            )
        )
        for error in result.errors:
            self.stdout.write(self.style.WARNING(f"Row {error['row']}: {error['error']}"))
