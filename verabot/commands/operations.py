"""Operations command handlers.

Handles: ops.heavywork, ops.deploy, ops.jobstatus.

The first two only hand work off to the job queue and return the job
id; ops.jobstatus reports on it later.
"""

from __future__ import annotations

import structlog

from ..exceptions import ErrorKind
from ..security import mask_user_id
from .base import Command, CommandResult, ServiceHandler, as_text, is_missing, to_payload

logger = structlog.get_logger("verabot.jobs")

HEAVYWORK_ATTEMPTS = 5
DEPLOY_TARGETS = ("production", "staging", "development")


class _OpsHandler(ServiceHandler):
    category = "operations"

    def __init__(self, job_queue):
        self.job_queue = job_queue


class HeavyWorkHandler(_OpsHandler):
    """Queue a long-running background job."""

    description = "Queue a long-running background job"
    usage = "/ops.heavywork task=<description>"
    examples = ('/ops.heavywork task="process 5000 items"',)

    async def execute(self, command: Command) -> CommandResult:
        task = as_text(command.get("task"))
        if is_missing(task):
            return CommandResult.fail("Task description is required")

        job = await self.job_queue.enqueue(
            "heavywork",
            {
                "task": task.strip(),
                "user_id": command.user_id,
                "source": command.source,
                "args": list(command.args),
            },
            attempts=HEAVYWORK_ATTEMPTS,
        )
        logger.info("heavywork_queued", job_id=job.id, user=mask_user_id(command.user_id))
        return CommandResult.ok({
            "message": f"Heavy job queued (job {job.id})",
            "job_id": job.id,
        })


class DeployHandler(_OpsHandler):
    description = "Trigger a deployment workflow"
    usage = "/ops.deploy [target=<env>]"
    examples = ("/ops.deploy target=staging",)

    async def execute(self, command: Command) -> CommandResult:
        target = (as_text(command.get("target")) or "production").strip().lower()
        if target not in DEPLOY_TARGETS:
            return CommandResult.fail(
                f"Invalid target. Must be one of: {', '.join(DEPLOY_TARGETS)}"
            )

        job = await self.job_queue.enqueue(
            "deploy", {"target": target, "user_id": command.user_id}
        )
        logger.info("deploy_queued", job_id=job.id, target=target,
                    user=mask_user_id(command.user_id))
        return CommandResult.ok({
            "message": f"Deployment to {target} queued (job {job.id})",
            "job_id": job.id,
            "target": target,
        })


class JobStatusHandler(_OpsHandler):
    description = "Check the status of a background job"
    usage = "/ops.jobstatus id=<job id>"

    async def execute(self, command: Command) -> CommandResult:
        job_id = as_text(command.get("id"))
        if is_missing(job_id):
            return CommandResult.fail("Job ID is required")

        job = await self.job_queue.get_job(job_id)
        if job is None:
            return CommandResult.fail(f"Job {job_id} not found", kind=ErrorKind.NOT_FOUND)

        message = f"Job {job.id} ({job.name}): {job.state.value}, {job.progress}%"
        if job.error and job.state.value == "failed":
            message += f"\nError: {job.error}"
        return CommandResult.ok({
            "message": message,
            "job_id": job.id,
            "state": job.state.value,
            "progress": job.progress,
            "return_value": job.return_value,
            "job": to_payload(job),
        })


def operations_handlers(job_queue) -> dict:
    """Return {command_name: handler} for every operations command."""
    return {
        "ops.heavywork": HeavyWorkHandler(job_queue),
        "ops.deploy": DeployHandler(job_queue),
        "ops.jobstatus": JobStatusHandler(job_queue),
    }
