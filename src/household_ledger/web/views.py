"""
JSON views for the ledger web API.

Every response carries the IngestionAPI envelope; the HTTP status follows
the error code (validation_error 400, not_found 404, provider_error 502).
"""

import json
import logging
from pathlib import Path

from django.conf import settings
from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from ..config import load_config
from ..services import IngestionAPI
from ..services.api import fail
from ..state_store import LedgerStore

logger = logging.getLogger(__name__)

_STATUS_BY_CODE = {
    "validation_error": 400,
    "not_found": 404,
    "provider_error": 502,
}


def _get_api() -> IngestionAPI:
    """Build the ingestion API from the configured paths."""
    config = load_config(Path(settings.LEDGER_CONFIG_PATH))
    store = LedgerStore(Path(settings.STATE_DB_PATH))
    return IngestionAPI(store, config)


def _respond(response: dict, success_status: int = 200) -> JsonResponse:
    if response["success"]:
        return JsonResponse(response, status=success_status)
    return JsonResponse(response, status=_STATUS_BY_CODE.get(response["error"]["code"], 500))


@csrf_exempt
@require_http_methods(["POST"])
def api_submit_import(request: HttpRequest) -> JsonResponse:
    """Accept a multipart upload (file, type) and start an import job."""
    upload = request.FILES.get("file")
    if upload is None:
        return _respond(fail("validation_error", "No file uploaded", field="file"))

    record_kind = request.POST.get("type", "")
    response = _get_api().submit_import(upload.read(), upload.name, record_kind)
    if response["success"]:
        logger.info("Import job %s started for %s", response["data"]["jobId"], upload.name)
    return _respond(response, success_status=202)


@csrf_exempt
@require_http_methods(["POST"])
def api_validate_import(request: HttpRequest) -> JsonResponse:
    """Dry run of an upload (file, type): per-row errors, nothing written."""
    upload = request.FILES.get("file")
    if upload is None:
        return _respond(fail("validation_error", "No file uploaded", field="file"))

    return _respond(_get_api().validate_import(upload.read(), upload.name, request.POST.get("type", "")))


@require_http_methods(["GET"])
def api_import_status(request: HttpRequest, job_id: str) -> JsonResponse:
    """Progress of one import job."""
    return _respond(_get_api().get_import_status(job_id))


@csrf_exempt
@require_http_methods(["POST"])
def api_trigger_sync(request: HttpRequest) -> JsonResponse:
    """Sync one account or every linked account.

    Body: {"accountId"?, "dateFrom"?, "dateTo"?, "forceSync"?}
    """
    try:
        body = json.loads(request.body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _respond(fail("validation_error", "Request body must be JSON"))
    if not isinstance(body, dict):
        return _respond(fail("validation_error", "Request body must be a JSON object"))

    response = _get_api().trigger_sync(
        account_id=body.get("accountId"),
        date_from=body.get("dateFrom"),
        date_to=body.get("dateTo"),
        force_sync=bool(body.get("forceSync", False)),
    )
    return _respond(response)


@require_http_methods(["GET"])
def api_sync_accounts(request: HttpRequest) -> JsonResponse:
    """Linked provider accounts with balances and recent activity."""
    return _respond(_get_api().list_accounts())
