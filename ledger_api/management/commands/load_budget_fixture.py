from django.core.management.base import BaseCommand, CommandError

from envelopes.ledger.exceptions import LedgerError
from envelopes.services.fixture_service import FixtureError, FixtureService


class Command(BaseCommand):
    help = 'Create a budget with envelopes, payees, income sources and opening transactions from a YAML file'

    def add_arguments(self, parser):
        parser.add_argument('path', help='Path to the YAML fixture')

    def handle(self, *args, **options):
        try:
            with open(options['path'], 'rb') as f:
                result = FixtureService().load(f)
        except OSError as e:
            raise CommandError(f"Cannot read {options['path']}: {e}")
        except FixtureError as e:
            raise CommandError(str(e))
        except LedgerError as e:
            raise CommandError(f'{e.code}: {e.message}')

        budget = result.budget
        budget.refresh_from_db()
        self.stdout.write(
            self.style.SUCCESS(
                f'Created budget {budget.pk} "{budget.name}" with {len(result.envelopes)} envelopes, '
                f'{len(result.payees)} payees, {len(result.income_sources)} income sources and '
                f'{len(result.transactions)} transactions (available: {budget.available_amount})'
            )
        )
