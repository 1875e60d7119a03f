"""Storage health and reconciliation routes."""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from festos_api.monitoring.health import HealthMonitor
from festos_api.services.container import get_health_monitor
from festos_api.utils.responses import success

router = APIRouter(prefix="/v1/health", tags=["health"])


class AlertConfigUpdate(BaseModel):
    """Alert threshold changes."""

    enabled: Optional[bool] = None
    response_time_threshold_ms: Optional[float] = Field(None, gt=0)
    error_rate_threshold_percent: Optional[float] = Field(None, ge=0, le=100)
    consistency_check_interval_minutes: Optional[int] = Field(None, ge=1)


@router.get("/system")
def system_health(request: Request, monitor: HealthMonitor = Depends(get_health_monitor)):
    """Overall and per-provider health."""
    return success(request, monitor.get_system_health())


@router.get("/metrics")
def performance_metrics(request: Request, monitor: HealthMonitor = Depends(get_health_monitor)):
    """Latency and error rates per provider, plus alert and storage configuration."""
    last_check = monitor.last_consistency_check
    return success(
        request,
        {
            "performance": monitor.get_performance_metrics(),
            "alert_config": monitor.get_alert_config(),
            "storage_configs": monitor.get_storage_configs(),
            "last_consistency_check": last_check.isoformat() if last_check else None,
            "consistency_check_due": monitor.is_consistency_check_due(),
        },
    )


@router.put("/alerts")
def update_alerts(
    update: AlertConfigUpdate,
    request: Request,
    monitor: HealthMonitor = Depends(get_health_monitor),
):
    monitor.set_alert_config(update.model_dump(exclude_none=True))
    return success(request, monitor.get_alert_config())


@router.post("/consistency-check")
def consistency_check(request: Request, monitor: HealthMonitor = Depends(get_health_monitor)):
    """Detect divergence between the database and the ledger. Read-only."""
    records = monitor.run_consistency_check()
    return success(request, {"divergences": [r.to_dict() for r in records], "count": len(records)})


@router.post("/sync")
def data_sync(request: Request, monitor: HealthMonitor = Depends(get_health_monitor)):
    """Run a consistency check and repair what the sync policy allows."""
    return success(request, monitor.run_data_sync())
