from django.core.management.base import BaseCommand, CommandError

from currency.models import RefreshSource
from currency.services import Failed, RefreshScheduler, Refreshed


class Command(BaseCommand):
    help = "Run one live rate refresh tick (subject to quota and cadence)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--source",
            choices=[RefreshSource.SCHEDULED, RefreshSource.MANUAL_REFRESH],
            default=RefreshSource.SCHEDULED,
        )

    def handle(self, *args, **options):
        outcome = RefreshScheduler().attempt_refresh(source=options["source"])

        if isinstance(outcome, Refreshed):
            self.stdout.write(
                self.style.SUCCESS(
                    f"Refreshed {len(outcome.updated_codes)} currencies; "
                    f"rate changed for: {', '.join(outcome.changed_codes) or 'none'}"
                )
            )
        elif isinstance(outcome, Failed):
            raise CommandError(f"Live rate refresh failed: {outcome.message}")
        else:
            next_at = outcome.next_allowed_at.isoformat() if outcome.next_allowed_at else "now"
            self.stdout.write(
                self.style.WARNING(
                    f"Refresh skipped ({outcome.reason.value}); next allowed at {next_at}, "
                    f"{outcome.remaining} requests left this month."
                )
            )
