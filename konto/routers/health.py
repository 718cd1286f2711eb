from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from konto.jobs.monitor import JobMonitor

router = APIRouter(
    prefix="/health",
    tags=["health"],
)


def get_monitor(request: Request) -> JobMonitor:
    return request.app.state.monitor


@router.get("")
def read_health(monitor: JobMonitor = Depends(get_monitor)):
    """
    503 once a scheduled job last failed or has not run for over 25 hours.
    """
    healthy = monitor.is_healthy()
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "ok" if healthy else "degraded", "jobs": monitor.all_jobs()}
    )

@router.get("/jobs")
def read_jobs(monitor: JobMonitor = Depends(get_monitor)):
    return {"healthy": monitor.is_healthy(), "jobs": monitor.all_jobs()}
