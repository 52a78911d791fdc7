from fastapi import APIRouter, Depends

from stayflow.core.auth import AuthContext, require_admin
from stayflow.observability.perf_metrics import perf_metrics

router = APIRouter()


@router.get("/perf")
def get_performance_snapshot(_auth: AuthContext = Depends(require_admin)):
    return perf_metrics.snapshot()
