""" Workers: "celery -A ledger_project worker -l info"
    Nightly checks: "celery -A ledger_project beat -l info"
    -A ledger_project imports ledger_project/__init__.py, which
    exposes celery_app. """
from __future__ import annotations
import os
from celery import Celery
from celery.schedules import crontab

# ensure Django settings are set for Celery
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "ledger_project.settings")

celery_app = Celery("ledger_project")

# CELERY_* names in Django settings become celery config
celery_app.config_from_object("django.conf:settings", namespace="CELERY")

# picks up ledger_core/tasks.py
celery_app.autodiscover_tasks()

celery_app.conf.beat_schedule = {
    # assets = liabilities + equity for every company, after midnight
    "verify-balance-sheets": {
        "task": "ledger_core.tasks.verify_all_balance_sheets",
        "schedule": crontab(hour=2, minute=15),
    },
}
