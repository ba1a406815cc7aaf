"""
Poll loop trigger - the client calls this when the app regains focus
"""
from fastapi import APIRouter, Depends

from bookingcrm.api.deps import get_poll_loop

router = APIRouter(prefix="/api/v1/poll", tags=["poll"])


@router.post("/wake")
def wake(loop=Depends(get_poll_loop)):
    """Run a tick now unless one is already in flight"""
    report = loop.wake()
    if report is None:
        return {"ran": False}
    return {
        "ran": True,
        "transitions": report.transitions,
        "completed": report.completed,
        "spawned": report.spawned,
        "checks_created": report.checks_created,
        "overdue": report.overdue,
        "errors": report.errors,
    }
