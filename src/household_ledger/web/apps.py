"""
Django application configuration.

On startup, import jobs left in processing by a previous server process
are failed so their callers see a terminal status.
"""

import logging
import os
import sqlite3
import sys

import yaml
from django.apps import AppConfig
from django.conf import settings

logger = logging.getLogger(__name__)

# Management commands that should not touch the ledger
_SKIP_COMMANDS = ("check", "help", "shell", "test")


class WebConfig(AppConfig):
    """Django app configuration for the ledger web API."""

    name = "household_ledger.web"
    verbose_name = "Household Ledger API"

    def ready(self):
        # RUN_MAIN is "true" in the reloader child; unset when running with --noreload
        if os.environ.get("RUN_MAIN") not in (None, "true"):
            return
        if len(sys.argv) > 1 and sys.argv[1] in _SKIP_COMMANDS:
            return
        self._fail_stale_jobs()

    def _fail_stale_jobs(self):
        from pathlib import Path

        from ..config import load_config
        from ..services import ImportJobTracker
        from ..state_store import LedgerStore

        try:
            config = load_config(Path(settings.LEDGER_CONFIG_PATH))
            store = LedgerStore(Path(settings.STATE_DB_PATH))
            failed = ImportJobTracker(store, config).fail_stale_jobs()
        except (OSError, ValueError, sqlite3.Error, yaml.YAMLError) as e:
            logger.warning("Could not check for stale import jobs: %s", e)
            return
        if failed:
            logger.info("Failed %d stale import job(s) on startup", len(failed))
