from django.core.management.base import BaseCommand

from inventory.services import StockUnitService


class Command(BaseCommand):
    help = 'Create the default measuring units (g, kg, ml, l, pcs, ...)'

    def handle(self, *args, **options):
        result = StockUnitService.seed_defaults()

        if result["count"]:
            self.stdout.write(self.style.SUCCESS(
                f'Created {result["count"]} unit(s): {", ".join(result["created"])}'
            ))
        else:
            self.stdout.write('All default units already exist.')
