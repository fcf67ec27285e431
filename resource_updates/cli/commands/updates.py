"""CLI commands for resource update jobs.

Commands:
- updates create: Create a job for a resource (optionally run it)
- updates run: Process or resume a job up to review
- updates show / list: Inspect jobs
- updates approve / reject: Moderator review
- updates retry: Start a fresh job for a failed one
- updates batch: Run jobs for due or named resources
- updates resources / changelog: Inspect the catalog
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from resource_updates.catalog.jobs import JobStatus, JobStore, TriggerKind, UpdateJob
from resource_updates.catalog.resources import ResourceRepository
from resource_updates.config import get_config
from resource_updates.errors import UpdatePipelineError
from resource_updates.pipeline.config import PipelineConfig
from resource_updates.pipeline.review import ROLE_HIERARCHY, Caller, ReviewService


def register_commands(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    """Add update subcommands to the main CLI parser."""

    updates_parser = subparsers.add_parser(
        "updates",
        description="Refresh catalog resources from their sources with moderator review.",
        help="Create, run and review resource update jobs.",
    )
    updates_subparsers = updates_parser.add_subparsers(
        dest="updates_command",
        metavar="SUBCOMMAND",
    )
    updates_subparsers.required = True

    def add_common_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--json",
            action="store_true",
            dest="output_json",
            help="Output results in JSON format.",
        )
        parser.add_argument(
            "--verbose",
            "-v",
            action="store_true",
            help="Enable debug logging.",
        )

    def add_reviewer_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--reviewer", required=True, help="User ID of the reviewer.")
        parser.add_argument(
            "--role",
            required=True,
            choices=ROLE_HIERARCHY,
            help="Role of the reviewer (moderator or higher may review).",
        )

    # updates create
    create_parser = updates_subparsers.add_parser(
        "create",
        description="Create an update job for one resource.",
        help="Create an update job.",
    )
    add_common_args(create_parser)
    create_parser.add_argument("slug", help="Resource slug.")
    create_parser.add_argument("--triggered-by", help="User ID recorded on the job.")
    create_parser.add_argument(
        "--run",
        action="store_true",
        help="Process the job immediately after creating it.",
    )
    create_parser.set_defaults(func=updates_create_cli, updates_command="create")

    # updates run
    run_parser = updates_subparsers.add_parser(
        "run",
        description="Process a pending job, or resume an interrupted one, up to review.",
        help="Process or resume a job.",
    )
    add_common_args(run_parser)
    run_parser.add_argument("job_id", help="Job ID.")
    run_parser.add_argument(
        "--auto-apply",
        action="store_true",
        help="Apply eligible changes without waiting for review.",
    )
    run_parser.set_defaults(func=updates_run_cli, updates_command="run")

    # updates show
    show_parser = updates_subparsers.add_parser(
        "show",
        description="Show one job with its proposed changes.",
        help="Show a job.",
    )
    add_common_args(show_parser)
    show_parser.add_argument("job_id", help="Job ID.")
    show_parser.set_defaults(func=updates_show_cli, updates_command="show")

    # updates list
    list_parser = updates_subparsers.add_parser(
        "list",
        description="List jobs, newest first.",
        help="List jobs.",
    )
    add_common_args(list_parser)
    list_parser.add_argument(
        "--status",
        choices=[status.value for status in JobStatus],
        help="Only jobs in this status.",
    )
    list_parser.add_argument("--resource", help="Only jobs for this resource slug.")
    list_parser.add_argument(
        "--pending",
        action="store_true",
        help="Only jobs waiting for review.",
    )
    list_parser.add_argument("--limit", type=int, default=20, help="Maximum jobs (default: 20).")
    list_parser.add_argument("--offset", type=int, default=0, help="Jobs to skip (default: 0).")
    list_parser.set_defaults(func=updates_list_cli, updates_command="list")

    # updates approve
    approve_parser = updates_subparsers.add_parser(
        "approve",
        description="Apply selected proposed changes of a job.",
        help="Approve a job.",
    )
    add_common_args(approve_parser)
    add_reviewer_args(approve_parser)
    approve_parser.add_argument("job_id", help="Job ID.")
    selection = approve_parser.add_mutually_exclusive_group(required=True)
    selection.add_argument(
        "--fields",
        help="Comma-separated fields to apply.",
    )
    selection.add_argument(
        "--all",
        action="store_true",
        dest="all_fields",
        help="Apply every proposed change.",
    )
    approve_parser.add_argument("--notes", help="Review notes.")
    approve_parser.set_defaults(func=updates_approve_cli, updates_command="approve")

    # updates reject
    reject_parser = updates_subparsers.add_parser(
        "reject",
        description="Reject a job without changing the resource.",
        help="Reject a job.",
    )
    add_common_args(reject_parser)
    add_reviewer_args(reject_parser)
    reject_parser.add_argument("job_id", help="Job ID.")
    reject_parser.add_argument("--notes", required=True, help="Reason for rejecting.")
    reject_parser.set_defaults(func=updates_reject_cli, updates_command="reject")

    # updates retry
    retry_parser = updates_subparsers.add_parser(
        "retry",
        description="Create a fresh job for the resource of a failed job.",
        help="Retry a failed job.",
    )
    add_common_args(retry_parser)
    retry_parser.add_argument("job_id", help="Failed job ID.")
    retry_parser.add_argument("--run", action="store_true", help="Process the new job immediately.")
    retry_parser.set_defaults(func=updates_retry_cli, updates_command="retry")

    # updates batch
    batch_parser = updates_subparsers.add_parser(
        "batch",
        description="Run update jobs for named resources, or for resources due a refresh.",
        help="Run a batch of update jobs.",
    )
    add_common_args(batch_parser)
    batch_parser.add_argument("slugs", nargs="*", help="Resource slugs (default: due resources).")
    batch_parser.add_argument("--limit", type=int, default=10, help="Maximum due resources (default: 10).")
    batch_parser.add_argument("--parallelism", type=int, help="Jobs processed concurrently.")
    batch_parser.add_argument(
        "--auto-apply",
        action="store_true",
        help="Apply objective facts and confident descriptions without review.",
    )
    batch_parser.add_argument(
        "--screenshots",
        action="store_true",
        help="Capture new screenshots of each resource.",
    )
    batch_parser.set_defaults(func=updates_batch_cli, updates_command="batch")

    # updates resources
    resources_parser = updates_subparsers.add_parser(
        "resources",
        description="List catalog resources and their refresh schedule.",
        help="List resources.",
    )
    add_common_args(resources_parser)
    resources_parser.add_argument(
        "--due",
        action="store_true",
        help="Only resources due for a refresh.",
    )
    resources_parser.set_defaults(func=updates_resources_cli, updates_command="resources")

    # updates changelog
    changelog_parser = updates_subparsers.add_parser(
        "changelog",
        description="Show the changelog of one resource.",
        help="Show a resource changelog.",
    )
    add_common_args(changelog_parser)
    changelog_parser.add_argument("slug", help="Resource slug.")
    changelog_parser.set_defaults(func=updates_changelog_cli, updates_command="changelog")


def _configure_logging(args: argparse.Namespace) -> None:
    logging.basicConfig(
        level=logging.DEBUG if getattr(args, "verbose", False) else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _pipeline_config(**overrides: Any) -> PipelineConfig:
    return PipelineConfig.from_project_config(get_config(), **overrides)


def _orchestrator(config: PipelineConfig):
    from resource_updates.pipeline.factory import build_orchestrator

    return build_orchestrator(config, get_config())


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _print_job(job: UpdateJob) -> None:
    print(f"Job {job.id}")
    print(f"  Resource: {job.resource_slug}")
    print(f"  Status: {job.status.value}")
    print(f"  Trigger: {job.trigger.value}" + (f" by {job.triggered_by}" if job.triggered_by else ""))
    if job.retry_of:
        print(f"  Retry of: {job.retry_of}")
    if job.error_message:
        print(f"  Error: {job.error_message}")
    if job.source_errors:
        print("  Source errors:")
        for error in job.source_errors:
            print(f"    - {error.source} ({error.url}): {error.error}")
    if job.analysis_summary:
        print(f"  Analysis: {job.analysis_summary}")
    if job.proposed_changes:
        print("  Proposed changes:")
        for change in job.proposed_changes:
            flag = " [BREAKING]" if change.is_breaking else ""
            print(f"    - {change.field} ({change.confidence:.2f}){flag}: {change.old_value!r} -> {change.new_value!r}")
    if job.reviewed_by:
        print(f"  Reviewed by: {job.reviewed_by}")
        if job.selected_fields is not None:
            print(f"  Applied fields: {', '.join(job.selected_fields) or '(none)'}")
        if job.review_notes:
            print(f"  Notes: {job.review_notes}")


def _emit_job(args: argparse.Namespace, job: UpdateJob) -> None:
    if args.output_json:
        _print_json(job.to_dict())
    else:
        _print_job(job)


def updates_create_cli(args: argparse.Namespace) -> int:
    """Create (and optionally run) a job for one resource."""
    _configure_logging(args)
    try:
        orchestrator = _orchestrator(_pipeline_config())
        job = orchestrator.create_job(args.slug, TriggerKind.MANUAL, args.triggered_by)
        if args.run:
            job = orchestrator.process_job(job.id)
    except UpdatePipelineError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    _emit_job(args, job)
    return 0


def updates_run_cli(args: argparse.Namespace) -> int:
    """Process a pending job, or resume an interrupted one."""
    _configure_logging(args)
    try:
        config = _pipeline_config(apply_policy="automatic" if args.auto_apply else None)
        orchestrator = _orchestrator(config)
        job = orchestrator.resume_job(args.job_id)
    except UpdatePipelineError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    _emit_job(args, job)
    return 1 if job.status == JobStatus.FAILED else 0


def updates_show_cli(args: argparse.Namespace) -> int:
    """Show one job."""
    job = JobStore().get(args.job_id)
    if job is None:
        print(f"Error: Job {args.job_id} not found", file=sys.stderr)
        return 1
    _emit_job(args, job)
    return 0


def updates_list_cli(args: argparse.Namespace) -> int:
    """List jobs, newest first."""
    store = JobStore()
    if args.pending:
        status = JobStatus.READY_FOR_REVIEW
    else:
        status = JobStatus(args.status) if args.status else None
    matching = store.list_jobs(status=status, resource_slug=args.resource)
    jobs = matching[args.offset : args.offset + args.limit]
    total = len(matching)

    if args.output_json:
        _print_json({"total": total, "jobs": [job.to_dict() for job in jobs]})
        return 0

    if not jobs:
        print("No jobs found.")
        return 0
    for job in jobs:
        print(
            f"{job.id}  {job.status.value:<16} {job.resource_slug:<30} "
            f"{len(job.proposed_changes)} change(s)  {job.created_at:%Y-%m-%d %H:%M}"
        )
    if args.pending:
        print(f"\n{len(jobs)} of {total} job(s) awaiting review")
    return 0


def _review_service() -> ReviewService:
    return ReviewService(ResourceRepository(), JobStore(), _pipeline_config())


def updates_approve_cli(args: argparse.Namespace) -> int:
    """Apply selected proposed changes."""
    _configure_logging(args)
    service = _review_service()
    caller = Caller(user_id=args.reviewer, role=args.role)
    try:
        if args.all_fields:
            job = service.jobs.get(args.job_id)
            fields = job.proposed_fields if job is not None else []
        else:
            fields = [name.strip() for name in args.fields.split(",") if name.strip()]
        job = service.approve(args.job_id, fields, args.notes, caller=caller)
    except UpdatePipelineError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    _emit_job(args, job)
    return 0


def updates_reject_cli(args: argparse.Namespace) -> int:
    """Reject a job."""
    _configure_logging(args)
    service = _review_service()
    try:
        job = service.reject(args.job_id, args.notes, caller=Caller(user_id=args.reviewer, role=args.role))
    except UpdatePipelineError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    _emit_job(args, job)
    return 0


def updates_retry_cli(args: argparse.Namespace) -> int:
    """Start a fresh job for a failed one."""
    _configure_logging(args)
    try:
        orchestrator = _orchestrator(_pipeline_config())
        job = orchestrator.retry_job(args.job_id)
        if args.run:
            job = orchestrator.process_job(job.id)
    except UpdatePipelineError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    _emit_job(args, job)
    return 0


def updates_batch_cli(args: argparse.Namespace) -> int:
    """Run a batch of update jobs."""
    from resource_updates.pipeline.runner import run_batch, run_due

    _configure_logging(args)
    config = _pipeline_config(
        apply_policy="automatic" if args.auto_apply else None,
        parallelism=args.parallelism,
        capture_screenshots=True if args.screenshots else None,
    )
    orchestrator = _orchestrator(config)

    if not args.output_json:
        print("Starting resource update batch...")
        if args.auto_apply:
            print("  [AUTO-APPLY - eligible changes are committed without review]")
        print(f"  Parallelism: {config.parallelism}")
        print()

    if args.slugs:
        result = run_batch(orchestrator, args.slugs, trigger=TriggerKind.MANUAL)
    else:
        result = run_due(orchestrator, limit=args.limit)

    if args.output_json:
        _print_json(result.to_dict())
    else:
        print(result.summary())
        if result.errors:
            print("\nErrors encountered:")
            for outcome in result.errors:
                print(f"  - {outcome.resource_slug}: {outcome.message}")

    return 1 if result.errors else 0


def updates_resources_cli(args: argparse.Namespace) -> int:
    """List catalog resources."""
    repository = ResourceRepository()
    if args.due:
        resources = repository.resources_due_for_update(limit=1000)
    else:
        resources = list(repository.list_resources())

    if args.output_json:
        _print_json([resource.to_dict() for resource in resources])
        return 0

    if not resources:
        print("No resources found.")
        return 0
    for resource in resources:
        last = resource.last_auto_updated_at.strftime("%Y-%m-%d") if resource.last_auto_updated_at else "never"
        auto = "" if resource.auto_update_enabled else " (auto-update off)"
        print(f"{resource.slug:<30} {resource.update_frequency:<8} last updated {last}{auto}")
    return 0


def updates_changelog_cli(args: argparse.Namespace) -> int:
    """Show a resource changelog."""
    entries = ResourceRepository().list_changelog(args.slug)
    if args.output_json:
        _print_json([entry.to_dict() for entry in entries])
        return 0
    if not entries:
        print(f"No changelog entries for {args.slug}.")
        return 0
    for entry in entries:
        print(f"v{entry.version}  {entry.applied_at:%Y-%m-%d %H:%M}  {entry.source}  by {entry.applied_by or 'unknown'}")
        for line in entry.summary.splitlines():
            print(f"    {line}")
    return 0
