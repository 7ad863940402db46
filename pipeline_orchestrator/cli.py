"""CLI entry point for triggering pipeline runs."""

import argparse
import asyncio
import json
import logging
import os
import sys
import threading
from collections.abc import Sequence
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any

from pydantic import SecretStr

from pipeline_orchestrator import triggers
from pipeline_orchestrator.approval import ApprovalBroker, UnknownApprovalError
from pipeline_orchestrator.artifacts import LocalArtifactStore
from pipeline_orchestrator.channels.slack import SlackWebhookChannel
from pipeline_orchestrator.definition_loader import load_pipeline_definition
from pipeline_orchestrator.executor import JobExecutor
from pipeline_orchestrator.models.context import CommitContext
from pipeline_orchestrator.models.result import PipelineResult
from pipeline_orchestrator.models.settings import EngineSettings
from pipeline_orchestrator.notifier import Notifier
from pipeline_orchestrator.orchestrator import (
    ApprovalNotPendingError,
    PipelineOrchestrator,
    PipelineRun,
)
from pipeline_orchestrator.quality_gates.base import QualityGate
from pipeline_orchestrator.quality_gates.sonarqube import (
    SonarQubeConfig,
    SonarQubeQualityGate,
)
from pipeline_orchestrator.runtimes.loading import load_runtime_manifest

STATUS_SYMBOLS = {
    "succeeded": "✓",
    "failed": "✗",
    "canceled": "!",
    "blocked": "⊘",
    "skipped": "-",
}


def log_results_summary(log: logging.Logger, result: PipelineResult) -> None:
    """Log a formatted summary of job outcomes."""
    log.info("=" * 80)
    log.info("Pipeline %s: %s", result.pipeline_id, result.status)
    log.info("=" * 80)

    for job_id, job in result.jobs.items():
        symbol = STATUS_SYMBOLS.get(job.status, "?")
        log.info(
            "%s %s: %s (%.2fs, %d attempt(s))",
            symbol,
            job_id,
            job.status,
            job.duration,
            job.attempts,
        )
        if job.environment_url:
            log.info("  Environment: %s", job.environment_url)
        if job.message:
            log.info("  Message: %s", job.message)


def format_output(result: PipelineResult) -> dict[str, Any]:
    """Format a pipeline result for JSON output."""
    jobs = [
        {
            "job": job_id,
            "status": job.status,
            "duration": job.duration,
            "attempts": job.attempts,
            "failure": job.failure,
            "message": job.message,
            "environment_url": job.environment_url,
        }
        for job_id, job in result.jobs.items()
    ]
    return {
        "pipeline": result.pipeline_id,
        "status": result.status,
        "total": len(jobs),
        "succeeded": sum(1 for j in jobs if j["status"] == "succeeded"),
        "failed": sum(1 for j in jobs if j["status"] == "failed"),
        "skipped": sum(1 for j in jobs if j["status"] == "skipped"),
        "jobs": jobs,
    }


def handle_command(run: PipelineRun, line: str) -> str | None:
    """Apply one `approve <job>`, `reject <job>` or `cancel` command.

    Returns an error message, or None when the command was applied.
    """
    parts = line.split()
    if not parts:
        return None

    match parts:
        case ["approve", job_id]:
            action = run.approve
        case ["reject", job_id]:
            action = run.reject
        case ["cancel"]:
            run.cancel()
            return None
        case _:
            return f"Unknown command: {line.strip()}"

    if job_id not in run.jobs:
        return f"Unknown job: {job_id}"
    try:
        action(job_id)
    except (ApprovalNotPendingError, UnknownApprovalError) as e:
        return str(e)
    return None


def listen_for_commands(run: PipelineRun, loop: asyncio.AbstractEventLoop) -> None:
    """Read commands from stdin on a daemon thread and apply them in the loop."""
    log = logging.getLogger("pipeline_orchestrator")

    def apply(line: str) -> None:
        if (error := handle_command(run, line)) is not None:
            log.warning(error)

    def reader() -> None:
        for line in sys.stdin:
            loop.call_soon_threadsafe(apply, line)

    threading.Thread(target=reader, name="command-reader", daemon=True).start()


def parse_context(args: argparse.Namespace) -> CommitContext:
    """Build the commit context from an event file or explicit arguments."""
    if args.event is not None:
        payload = json.loads(args.event.read_text())
        if args.event_format == "github":
            return triggers.from_github(payload)
        return triggers.from_gitlab(payload)

    if not args.sha or not args.project:
        raise SystemExit("--sha and --project are required without --event")
    return CommitContext(
        sha=args.sha, project=args.project, branch=args.branch, tag=args.tag
    )


async def run(
    definition_path: Path,
    context: CommitContext,
    settings: EngineSettings,
    runtime_key: str = "local",
    runtime_config_json: str = "{}",
    sonar_config_json: str | None = None,
    pre_approved: Sequence[str] = (),
    listen: bool = True,
) -> int:
    """Run one pipeline for a commit and return the exit code."""
    log = logging.getLogger("pipeline_orchestrator")

    log.info("Loading pipeline definition: %s", definition_path)
    definition = await load_pipeline_definition(definition_path)

    log.info("Loading runtime: %s", runtime_key)
    manifest = load_runtime_manifest(runtime_key)
    runtime_config = manifest.config_cls(**json.loads(runtime_config_json))

    async with AsyncExitStack() as stack:
        runtime = await stack.enter_async_context(
            manifest.runtime_factory(runtime_config)
        )
        channel = await stack.enter_async_context(SlackWebhookChannel.create())

        quality_gate: QualityGate | None = None
        if sonar_config_json is not None:
            sonar_config = SonarQubeConfig(**json.loads(sonar_config_json))
            quality_gate = await stack.enter_async_context(
                SonarQubeQualityGate.from_config(sonar_config)
            )

        notifier = Notifier(channel)
        orchestrator = PipelineOrchestrator(
            definition=definition,
            settings=settings,
            executor=JobExecutor(
                runtime=runtime,
                artifact_store=LocalArtifactStore(
                    root=settings.artifact_dir, source_dir=settings.project_dir
                ),
                quality_gate=quality_gate,
                default_timeout=settings.default_job_timeout,
            ),
            notifier=notifier,
            approvals=ApprovalBroker(pre_approved=frozenset(pre_approved)),
        )

        pipeline = orchestrator.trigger(context)
        if listen:
            listen_for_commands(pipeline, asyncio.get_running_loop())

        try:
            result = await pipeline.wait()
        except asyncio.CancelledError:
            pipeline.cancel()
            await pipeline.wait()
            raise
        finally:
            await notifier.drain()

    log_results_summary(log, result)
    print(json.dumps(format_output(result), indent=2))

    return 0 if result.status == "success" else 1


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Run a staged CI/CD pipeline")
    parser.add_argument(
        "--definition",
        type=Path,
        required=True,
        help="Path to the pipeline definition YAML",
    )
    parser.add_argument("--project", help="Project path (group/name)")
    parser.add_argument("--sha", help="Commit SHA")
    ref = parser.add_mutually_exclusive_group()
    ref.add_argument("--branch", help="Branch the commit was pushed to")
    ref.add_argument("--tag", help="Tag the commit was pushed as")
    parser.add_argument(
        "--event",
        type=Path,
        help="Webhook payload file to derive the commit from",
    )
    parser.add_argument(
        "--event-format",
        choices=["gitlab", "github"],
        default="gitlab",
        help="Format of the webhook payload",
    )
    parser.add_argument(
        "--runtime",
        default="local",
        help="Runtime key (local, docker)",
    )
    parser.add_argument(
        "--runtime-config",
        default="{}",
        help="JSON configuration for the runtime",
    )
    parser.add_argument(
        "--sonar-config",
        help="JSON configuration enabling the SonarQube quality gate",
    )
    parser.add_argument(
        "--webhook-url",
        default=os.environ.get("SLACK_WEBHOOK_URL"),
        help="Notification webhook (defaults to $SLACK_WEBHOOK_URL)",
    )
    parser.add_argument(
        "--project-dir",
        type=Path,
        default=Path.cwd(),
        help="Directory jobs run in and artifacts are collected from",
    )
    parser.add_argument(
        "--artifact-dir",
        type=Path,
        default=Path(".pipeline/artifacts"),
        help="Directory artifacts are stored in",
    )
    parser.add_argument(
        "--max-concurrent-jobs",
        type=int,
        default=4,
        help="Maximum number of jobs running at once",
    )
    parser.add_argument(
        "--approve",
        action="append",
        default=[],
        metavar="JOB",
        help="Pre-approve a manual job (repeatable)",
    )
    parser.add_argument(
        "--no-listen",
        action="store_true",
        help="Do not read approve/reject/cancel commands from stdin",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    settings = EngineSettings(
        webhook_url=SecretStr(args.webhook_url) if args.webhook_url else None,
        project_dir=args.project_dir,
        artifact_dir=args.artifact_dir,
        max_concurrent_jobs=args.max_concurrent_jobs,
    )

    exit_code = asyncio.run(
        run(
            definition_path=args.definition,
            context=parse_context(args),
            settings=settings,
            runtime_key=args.runtime,
            runtime_config_json=args.runtime_config,
            sonar_config_json=args.sonar_config,
            pre_approved=args.approve,
            listen=not args.no_listen,
        )
    )
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()
