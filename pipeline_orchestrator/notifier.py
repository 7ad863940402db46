"""Best-effort notification of job and deployment outcomes."""

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

from pipeline_orchestrator.channels.base import NotificationChannel

log = logging.getLogger(__name__)

type Outcome = Literal["success", "failure", "canceled"]
type Priority = Literal["normal", "high"]


@dataclass(frozen=True, kw_only=True)
class NotificationEvent:
    """Outcome of a job or deployment addressed to a channel."""

    pipeline_id: str
    job_id: str
    outcome: Outcome
    channel: str
    payload: Mapping[str, Any]
    priority: Priority = "normal"


def job_outcome_event(
    *,
    pipeline_id: str,
    job_id: str,
    outcome: Outcome,
    channel: str,
    variables: Mapping[str, str],
) -> NotificationEvent:
    """Alert for a job that ended without succeeding."""
    verb = "was canceled" if outcome == "canceled" else "failed"
    text = (
        f"🚨 {variables.get('CI_PROJECT_PATH', '')} - job *{job_id}* "
        f"<{variables.get('CI_JOB_URL', '')}|{verb}> in pipeline "
        f"<{variables.get('CI_PIPELINE_URL', '')}|#{pipeline_id}>."
    )
    return NotificationEvent(
        pipeline_id=pipeline_id,
        job_id=job_id,
        outcome=outcome,
        channel=channel,
        payload={"text": text},
    )


def deployment_event(
    *,
    pipeline_id: str,
    job_id: str,
    succeeded: bool,
    channel: str,
    environment: str,
    environment_url: str | None,
    variables: Mapping[str, str],
) -> NotificationEvent:
    """High-priority alert for a deployment to a protected environment."""
    project = variables.get("CI_PROJECT_PATH", "")
    if succeeded:
        text = (
            f"✅ {project} - *{environment}* deploy succeeded "
            f"(<{environment_url or ''}|live site>)."
        )
    else:
        text = (
            f"❌ {project} - *{environment}* deploy FAILED "
            f"(<{variables.get('CI_JOB_URL', '')}|log>)."
        )
    return NotificationEvent(
        pipeline_id=pipeline_id,
        job_id=job_id,
        outcome="success" if succeeded else "failure",
        channel=channel,
        payload={
            "text": text,
            "environment": environment,
            "environment_url": environment_url,
        },
        priority="high",
    )


class Notifier:
    """Dispatches notification events in the background.

    ``notify`` returns immediately. Delivery failures are logged and
    discarded; they never reach the pipeline.
    """

    def __init__(self, channel: NotificationChannel | None) -> None:
        self.channel = channel
        self._tasks: set[asyncio.Task[None]] = set()

    def notify(self, event: NotificationEvent) -> None:
        """Schedule delivery of an event."""
        if self.channel is None or not event.channel:
            log.debug("No notification channel, dropping event for %s", event.job_id)
            return

        task = asyncio.get_running_loop().create_task(self._deliver(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""
        while self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _deliver(self, event: NotificationEvent) -> None:
        assert self.channel is not None
        try:
            await self.channel.send(event.channel, event.payload)
        except Exception as e:
            log.warning(
                "Notification for %s (%s) not delivered: %s",
                event.job_id,
                event.outcome,
                e,
            )
            return
        log.info(
            "Notification sent for %s (%s, priority=%s)",
            event.job_id,
            event.outcome,
            event.priority,
        )
