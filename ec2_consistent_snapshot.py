#!/usr/bin/env python3
"""
EC2 Consistent Snapshot Script
Freezes filesystems, snapshots every attached EBS volume, and unfreezes.
"""

from consistent_snapshot import main

if __name__ == "__main__":  # pragma: no cover - script entry point
    raise SystemExit(main())
