import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger
from django.conf import settings
from django.core.management.base import BaseCommand
from django.db import close_old_connections
from django.utils import timezone

from inventory.services import AlertService

logger = logging.getLogger(__name__)


def check_low_stock():
    close_old_connections()
    result = AlertService.check_all()
    logger.info(f"Low stock sweep: {result['checked']} low, {result['notified']} notified")
    return result


class Command(BaseCommand):
    help = 'Send Telegram alerts for low stock items on a schedule'

    def add_arguments(self, parser):
        parser.add_argument('--once', action='store_true', help='Run one sweep and exit')
        parser.add_argument(
            '--interval',
            type=int,
            default=None,
            help='Minutes between sweeps (default: LOW_STOCK_CHECK_INTERVAL)'
        )

    def handle(self, *args, **options):
        if options['once']:
            result = check_low_stock()
            self.stdout.write(self.style.SUCCESS(
                f'{result["checked"]} low item(s), {result["notified"]} notification(s) sent'
            ))
            return

        interval = options['interval'] or getattr(settings, 'LOW_STOCK_CHECK_INTERVAL', 30)

        logger.info("=" * 50)
        logger.info("Starting Low Stock Monitor")
        logger.info(f"Current time: {timezone.now()}")
        logger.info(f"Sweep every {interval} minute(s)")
        logger.info("=" * 50)

        scheduler = BlockingScheduler()
        scheduler.add_job(
            check_low_stock,
            IntervalTrigger(minutes=interval),
            id='low_stock_check',
            name='Check low stock items',
            replace_existing=True,
            next_run_time=timezone.now(),
        )

        try:
            self.stdout.write(self.style.SUCCESS('Monitor started. Press Ctrl+C to exit.'))
            scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            logger.info("Monitor stopped.")
            scheduler.shutdown()
