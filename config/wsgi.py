"""
WSGI config for the pass commerce backend.

It exposes the WSGI callable as a module-level variable named ``application``.
"""

import os

import django
from django.core.wsgi import get_wsgi_application


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes")


def _migrate_if_requested():
    """
    Hosts without a release phase cannot run `manage.py migrate`, so
    AUTO_MIGRATE applies migrations when the worker boots.
    """
    if not _env_flag("AUTO_MIGRATE"):
        return

    from django.core.management import call_command

    try:
        call_command("migrate", interactive=False, run_syncdb=True, verbosity=1)
    except Exception as exc:  # pragma: no cover - log best effort
        print(f"[migrate] failed at startup: {exc}")
    else:
        print("[migrate] database up to date at startup")


def _seed_currencies_if_requested():
    """AUTO_SEED_CURRENCIES creates the base currency set on first boot."""
    if not _env_flag("AUTO_SEED_CURRENCIES"):
        return

    from django.core.management import call_command

    try:
        call_command("seed_currencies", verbosity=0)
    except Exception as exc:  # pragma: no cover - log best effort
        print(f"[seed_currencies] failed at startup: {exc}")
    else:
        print("[seed_currencies] currency settings ready")


os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
django.setup()
_migrate_if_requested()
_seed_currencies_if_requested()

application = get_wsgi_application()
