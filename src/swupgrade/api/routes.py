"""API route handlers for the upgrade client."""

import logging

from fastapi import APIRouter, BackgroundTasks, Request

from swupgrade.api.models import (
    CommandResponse,
    LogLine,
    LogResponse,
    ProgressResponse,
    UpgradeRequest,
)
from swupgrade.errors import (
    EventStreamNotConnectedError,
    UpgradeInProgressError,
)
from swupgrade.models.session import UpgradeSession
from swupgrade.models.status import StageEnum
from swupgrade.services.orchestrator import UpgradeOrchestrator
from swupgrade.services.state_manager import StateManager

router = APIRouter(prefix="/api/v1.0")

logger = logging.getLogger("swupgrade.api")


@router.get("/progress", response_model=ProgressResponse)
async def get_progress():
    """GET /api/v1.0/progress - Query current upgrade status.

    Response format (failed stage):
        {
            "code": 500,
            "msg": "Upgrade failed: INSTALL_TIMEOUT: Installation timed out",
            "data": {
                "stage": "failed",
                "progress": 37,
                "message": "Installation timed out",
                "error": "INSTALL_TIMEOUT: Installation timed out",
                "upload": {...},
                "install": {...}
            }
        }
    """
    status = StateManager().get_status()

    if status.stage == StageEnum.FAILED:
        msg = f"Upgrade failed: {status.error}" if status.error else "Upgrade failed"
        return ProgressResponse(code=500, msg=msg, data=status)
    return ProgressResponse(code=200, msg="success", data=status)


@router.get("/log", response_model=LogResponse)
async def get_log(request: Request):
    """GET /api/v1.0/log - Upgrade log of the current attempt."""
    entries = request.app.state.event_log.entries()
    return LogResponse(
        data=[
            LogLine(
                tag=e.tag, severity=e.severity, message=e.message, timestamp=e.timestamp
            )
            for e in entries
        ]
    )


@router.post("/upgrade", response_model=CommandResponse)
async def post_upgrade(
    upgrade: UpgradeRequest, request: Request, background_tasks: BackgroundTasks
):
    """POST /api/v1.0/upgrade - Start an upgrade in the background.

    Returns code 400 for an unusable image, 409 while another upgrade runs
    and 503 when the device event stream is not connected.
    """
    orchestrator: UpgradeOrchestrator = request.app.state.orchestrator

    try:
        session = UpgradeSession.from_file(
            upgrade.file_path,
            clear_user_data=upgrade.clear_user_data,
            dry_run=upgrade.dry_run,
        )
    except (OSError, ValueError) as e:
        return CommandResponse(code=400, msg=f"Invalid firmware file: {e}")

    try:
        orchestrator.reserve()
    except UpgradeInProgressError as e:
        return CommandResponse(
            code=409, msg=str(e), stage=StateManager().get_status().stage
        )
    except EventStreamNotConnectedError as e:
        return CommandResponse(code=503, msg=str(e))

    logger.info(f"Upgrade scheduled: {session.file_name}")
    background_tasks.add_task(_upgrade_workflow, orchestrator, session)
    return CommandResponse(code=200, msg="success")


async def _upgrade_workflow(orchestrator: UpgradeOrchestrator, session: UpgradeSession) -> None:
    """Background task for the upgrade workflow.

    The route has already reserved the orchestrator, so run() starts without
    re-checking.
    """
    await orchestrator.run(session)
