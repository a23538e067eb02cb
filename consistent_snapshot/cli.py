"""
Command-line interface for the consistent snapshot tool.

Parses arguments, sets up logging and the run lock, and maps the run report
to a process exit code.
"""

from __future__ import annotations

import argparse
import functools
import logging
import sys
from contextlib import ExitStack

from consistent_snapshot import config
from consistent_snapshot.config import ConfigurationError, parse_fs_types
from consistent_snapshot.exceptions import EXIT_GENERIC_FAILURE, EXIT_USAGE_ERROR, RunLockError
from consistent_snapshot.filesystems import list_mount_targets
from consistent_snapshot.freeze import FreezeController
from consistent_snapshot.instance_context import Ec2InstanceContext, StaticInstanceContext
from consistent_snapshot.orchestrator import CriticalSectionOrchestrator
from consistent_snapshot.reporting import print_failure_diagnostics, print_run_report
from consistent_snapshot.run_lock import run_lock
from consistent_snapshot.snapshots import SnapshotRequester
from consistent_snapshot.tags import TagFormatError, parse_tags


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="ec2-consistent-snapshot",
        description=(
            "Freeze writable filesystems, snapshot every EBS volume attached to this "
            "instance, then unfreeze."
        ),
    )
    parser.add_argument("--description", help="Description applied to every snapshot.")
    parser.add_argument(
        "--tags",
        default="",
        metavar="NAME=VALUE;...",
        help="Tags applied to every snapshot, e.g. 'Env=prod;Team=infra'.",
    )
    parser.add_argument("--region", help="Region override (default: from instance metadata).")
    parser.add_argument("--instance-id", help="Instance ID override (default: from instance metadata).")
    parser.add_argument(
        "--fs-types",
        metavar="TYPE,...",
        help=f"Filesystem kinds to freeze (default: {','.join(config.DEFAULT_FREEZABLE_FS_TYPES)}).",
    )
    parser.add_argument(
        "--max-workers",
        type=int,
        help=f"Concurrent snapshot requests (default: {config.MAX_SNAPSHOT_WORKERS}).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log fsfreeze commands without running them and send DryRun snapshot requests.",
    )
    parser.add_argument("--lock-file", help=f"Run lock path (default: {config.LOCK_FILE_PATH}).")
    parser.add_argument("--no-lock", action="store_true", help="Do not take the single-instance run lock.")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging.")
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def build_orchestrator(args: argparse.Namespace, tags: list[dict]) -> CriticalSectionOrchestrator:
    """Wire the orchestrator's collaborators from parsed arguments."""
    context = Ec2InstanceContext()
    if args.instance_id or args.region:
        context = StaticInstanceContext(instance_id=args.instance_id, region=args.region, fallback=context)

    fs_types = parse_fs_types(args.fs_types) if args.fs_types else config.get_freezable_fs_types()
    max_workers = args.max_workers if args.max_workers is not None else config.get_max_workers()

    return CriticalSectionOrchestrator(
        context=context,
        freeze_controller=FreezeController(dry_run=args.dry_run),
        snapshot_requester=SnapshotRequester(max_workers=max_workers, dry_run=args.dry_run),
        description=args.description,
        tags=tags,
        enumerate_targets=functools.partial(list_mount_targets, fs_types),
    )


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the ec2-consistent-snapshot CLI."""
    args = parse_args(argv if argv is not None else sys.argv[1:])
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(message)s",
    )

    try:
        tags = parse_tags(args.tags)
        if args.max_workers is not None and args.max_workers < 1:
            raise ConfigurationError("--max-workers", str(args.max_workers))
        orchestrator = build_orchestrator(args, tags)
    except (TagFormatError, ConfigurationError) as exc:
        logging.error("%s", exc)
        return EXIT_USAGE_ERROR

    lock_path = args.lock_file or config.get_lock_file_path()
    with ExitStack() as stack:
        if not args.no_lock:
            try:
                stack.enter_context(run_lock(lock_path))
            except RunLockError as exc:
                logging.error("%s", exc)
                return exc.exit_code
            except OSError as exc:
                logging.error("Unable to take run lock %s: %s", lock_path, exc)
                return EXIT_GENERIC_FAILURE
        try:
            report = orchestrator.run()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            logging.exception("Snapshot run failed unexpectedly")
            report = orchestrator.report
            if report.error is None:
                report.error = exc

    print_run_report(report)
    if report.exit_code != 0 or report.failed_results:
        print_failure_diagnostics(report)
    return report.exit_code


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
