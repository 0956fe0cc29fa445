import logging

from django.core.management.base import BaseCommand, CommandError

from inventory.services import StockLevelService, ConsistencyError

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Compare every stock counter with its cost lots and report drift'

    def add_arguments(self, parser):
        parser.add_argument('--item', type=int, help='Check a single stock item id')
        parser.add_argument('--no-notify', action='store_true', help='Do not send a Telegram alert on drift')

    def handle(self, *args, **options):
        try:
            result = StockLevelService.reconcile(
                stock_item_id=options.get('item'),
                notify=not options['no_notify'],
            )
        except ConsistencyError as e:
            for drift in e.drifts:
                self.stderr.write(
                    f'{drift["name"]} (#{drift["stock_item_id"]}): counter {drift["current_stock"]}, '
                    f'lots {drift["lot_total"]}, shortfall {drift["shortfall"]}, '
                    f'difference {drift["difference"]}'
                )
            raise CommandError(e.message)

        self.stdout.write(self.style.SUCCESS(f'{result["checked"]} item(s) consistent'))
