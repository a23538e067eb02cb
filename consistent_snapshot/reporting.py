"""
Snapshot Run Reporting Module
Prints the final report to stdout and failure diagnostics to stderr.
"""

import sys

from consistent_snapshot.orchestrator import Phase, RunReport


def print_run_report(report: RunReport) -> None:
    """
    Print the summary of a run.

    Args:
        report: RunReport returned by the orchestrator
    """
    print("CONSISTENT SNAPSHOT SUMMARY:")
    print("=" * 50)
    print(f"Instance: {report.instance_id or 'unknown'}")
    print(f"Region: {report.region or 'unknown'}")
    if report.targets:
        print(f"Filesystems frozen for the run: {', '.join(t.path for t in report.targets)}")
    else:
        print("Filesystems frozen for the run: none")
    if report.frozen_seconds is not None:
        print(f"Freeze window: {report.frozen_seconds:.2f}s")
    print()

    succeeded = [result for result in report.results if result.succeeded]
    print(f"Requested {len(report.results)} snapshot(s): {len(succeeded)} started, {len(report.failed_results)} failed")
    for result in report.results:
        if result.dry_run:
            print(f"  {result.volume_id} -> dry run OK")
        elif result.succeeded:
            print(f"  {result.volume_id} -> {result.snapshot_id}")
        else:
            print(f"  {result.volume_id} -> FAILED")
    print()

    if report.phase == Phase.DONE and report.results and not report.failed_results:
        print("Snapshots are being created in the background and will be available shortly.")


def print_failure_diagnostics(report: RunReport, stream=None) -> None:
    """Write the triggering error and the per-volume snapshot output to stderr."""
    stream = stream or sys.stderr
    if report.unfreeze_error is not None:
        print("=" * 70, file=stream)
        print("WARNING: FILESYSTEMS MAY STILL BE FROZEN", file=stream)
        for target in report.unfreeze_error.still_frozen:
            print(f"  {target.path}", file=stream)
        print("Unfreeze them manually with: fsfreeze -u <mountpoint>", file=stream)
        print("=" * 70, file=stream)
    if report.error is not None and report.error is not report.unfreeze_error:
        phase = report.failed_phase or report.phase
        print(f"Error ({phase.value}): {report.error}", file=stream)
    if report.unfreeze_error is not None:
        print(f"Error (unfreezing): {report.unfreeze_error}", file=stream)
    for result in report.failed_results:
        print(f"  {result.error}", file=stream)
