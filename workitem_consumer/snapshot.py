"""Snapshots of the files in a working directory."""
from pathlib import Path
from typing import FrozenSet, Union

from workitem_consumer.logging_conf import logger


def snapshot(directory: Union[str, Path]) -> FrozenSet[str]:
    """
    Return the names of the regular files directly inside a directory.

    Subdirectories are ignored. A directory that can't be listed yields an
    empty set.
    """
    try:
        return frozenset(p.name for p in Path(directory).iterdir() if p.is_file())
    except OSError as e:
        logger.warning(f"Failed to list {directory}: {e}")
        return frozenset()


def diff(before: FrozenSet[str], after: FrozenSet[str]) -> FrozenSet[str]:
    """Files present in `after` but not in `before`."""
    return frozenset(after) - frozenset(before)
