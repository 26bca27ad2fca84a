"""
URL configuration for the ledger web API.
"""

from django.urls import path

from . import views

urlpatterns = [
    path("api/imports/", views.api_submit_import, name="submit_import"),
    path("api/imports/validate/", views.api_validate_import, name="validate_import"),
    path("api/imports/<str:job_id>/", views.api_import_status, name="import_status"),
    path("api/sync/", views.api_trigger_sync, name="trigger_sync"),
    path("api/sync/accounts/", views.api_sync_accounts, name="sync_accounts"),
]
