"""
Snapshot tag parsing.

Turns the ``name=value;name2=value2`` command-line form into the
TagSpecifications structure CreateSnapshot expects.
"""

from __future__ import annotations

from typing import Dict, List, Optional

TAG_SEPARATOR = ";"
KEY_VALUE_SEPARATOR = "="


class TagFormatError(ValueError):
    """Raised when a tag segment is not of the form name=value."""

    def __init__(self, segment: str):
        super().__init__(f"Invalid tag {segment!r}: expected name=value")


def parse_tags(raw: Optional[str]) -> List[Dict[str, str]]:
    """
    Parse ``name=value;name2=value2`` into a list of Key/Value dicts.

    Empty segments (such as a trailing separator) are ignored. Values may
    themselves contain ``=``.

    Raises:
        TagFormatError: If a segment has no ``=`` or an empty name
    """
    tags = []
    for segment in (raw or "").split(TAG_SEPARATOR):
        if not segment.strip():
            continue
        key, separator, value = segment.partition(KEY_VALUE_SEPARATOR)
        key = key.strip()
        if not separator or not key:
            raise TagFormatError(segment)
        tags.append({"Key": key, "Value": value})
    return tags


def build_tag_specifications(tags: List[Dict[str, str]]) -> List[Dict]:
    """Wrap snapshot tags for CreateSnapshot; no tags means no specification."""
    if not tags:
        return []
    return [{"ResourceType": "snapshot", "Tags": [dict(tag) for tag in tags]}]
