"""
Django application initialization.
"""

import os

SETTINGS_MODULE = "household_ledger.web.settings"


def _export_paths(config_path=None, state_db_path=None) -> None:
    # os.environ requires strings, so convert Path objects
    if config_path:
        os.environ["LEDGER_CONFIG"] = str(config_path)
    if state_db_path:
        os.environ["STATE_DB_PATH"] = str(state_db_path)
    elif config_path and "STATE_DB_PATH" not in os.environ:
        from pathlib import Path

        from ..config import load_config

        os.environ["STATE_DB_PATH"] = str(load_config(Path(config_path)).state_db_path)


def get_wsgi_application(config_path=None, state_db_path=None):
    """
    Get the Django WSGI application configured with our settings.

    Args:
        config_path: Path to config.yaml (optional)
        state_db_path: Path to the ledger database (optional, overrides config)
    """
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", SETTINGS_MODULE)
    _export_paths(config_path, state_db_path)

    from django.core.wsgi import get_wsgi_application as django_wsgi

    return django_wsgi()


def run_server(
    host: str = "127.0.0.1",
    port: int = 8080,
    config_path=None,
    state_db_path=None,
):
    """
    Run the Django development server.

    Args:
        host: Host to bind to
        port: Port to listen on
        config_path: Path to config.yaml
        state_db_path: Path to the ledger database (overrides config)
    """
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", SETTINGS_MODULE)
    _export_paths(config_path, state_db_path)

    import django

    django.setup()

    from django.core.management import execute_from_command_line

    print(f"💾 Ledger DB: {os.environ.get('STATE_DB_PATH', 'data/ledger.db')}")
    print("\nPress Ctrl+C to stop.\n")

    execute_from_command_line(
        [
            "household-ledger",
            "runserver",
            f"{host}:{port}",
            "--noreload",
        ]
    )
