from django.core.management.base import BaseCommand, CommandError
from django.utils.dateparse import parse_date

from core.models import Business
from core.services import auto_match_transactions


def _date_arg(value):
    if value is None:
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise CommandError(f"Invalid date '{value}', expected YYYY-MM-DD.")
    return parsed


class Command(BaseCommand):
    help = "Run the auto-match batch over unmatched bank transactions of a business."

    def add_arguments(self, parser):
        parser.add_argument("business_id", type=int)
        parser.add_argument("--start", help="Only transactions on or after this date (YYYY-MM-DD).")
        parser.add_argument("--end", help="Only transactions on or before this date (YYYY-MM-DD).")

    def handle(self, *args, **options):
        business = Business.objects.filter(pk=options["business_id"], is_deleted=False).first()
        if business is None:
            raise CommandError(f"Business {options['business_id']} does not exist.")

        result = auto_match_transactions(
            business,
            None,
            start_date=_date_arg(options.get("start")),
            end_date=_date_arg(options.get("end")),
        )
        self.stdout.write(
            self.style.SUCCESS(
                f"Reviewed {result.reviewed}, matched {result.matched}, errors {len(result.errors)}."
            )
        )
        for error in result.errors:
            self.stdout.write(self.style.WARNING(f"Transaction {error.bank_transaction_id}: {error.reason}"))
