# backend/wishcraft/routes/system.py
"""
System health and version endpoints.

Health reports database reachability plus reconciliation backlog signals
(pending contributions, over-purchased items) for deployment debugging.
"""

import sys
import time

from flask import Blueprint, current_app
from sqlalchemy import func

from ..extensions import db
from ..models import GroupGiftContribution, Registry, RegistryItem
from ..models.purchases import CONTRIBUTION_PENDING
from wishcraft.time_utils import utcnow

system_bp = Blueprint("system", __name__)

API_VERSION = "1.0.0"


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        registry_count = db.session.query(func.count(Registry.id)).scalar()
        item_count = db.session.query(func.count(RegistryItem.id)).scalar()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "registries": registry_count,
                "registry_items": item_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_reconciliation_health() -> dict:
    """
    Surface states that need a human: contributions stuck in pending and
    items bought more times than requested. Neither is an outage.
    """
    start_time = time.time()
    try:
        pending_contributions = (
            db.session.query(func.count(GroupGiftContribution.id))
            .filter(GroupGiftContribution.payment_status == CONTRIBUTION_PENDING)
            .scalar()
        )
        over_purchased_items = (
            db.session.query(func.count(RegistryItem.id))
            .filter(RegistryItem.quantity_purchased > RegistryItem.quantity)
            .scalar()
        )

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "degraded" if not current_app.config.get("SHOPIFY_WEBHOOK_SECRET") else "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "webhook_secret_configured": bool(current_app.config.get("SHOPIFY_WEBHOOK_SECRET")),
                "pending_contributions": pending_contributions,
                "over_purchased_items": over_purchased_items,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Reconciliation health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Reconciliation check error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy, or degraded (webhook secret missing; webhooks will 401)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    reconciliation_health = check_reconciliation_health()

    all_checks = [database_health, reconciliation_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "reconciliation": reconciliation_health,
        }
    }

    return response, http_status


@system_bp.get("/version")
def version():
    """
    Version endpoint for deployment debugging.

    Does NOT expose secrets, database credentials or internal paths.
    """
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": API_VERSION,
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }
