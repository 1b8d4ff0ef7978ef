"""
Node list output.

A finished session writes its frontier to

    {data_dir}/{YYYY-MM-DD}/{HHMMSS}.lst

one ``identity, address, location`` line per peer. The file is written
under a ``.tmp`` name in the same directory and renamed into place, so a
partially written list is never visible at the final path.
"""

import contextlib
import os
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable

from dhtcrawler.network.peer import PeerRecord


TEMP_FILE_EXT = ".tmp"
DIR_MODE = 0o700


def data_filename(data_dir: Path, stamp: datetime) -> Path:
    """
    Output path for a session created at ``stamp``.

    Missing directory components are created.

    Raises:
        OSError: If the day directory cannot be created
    """
    day_dir = Path(data_dir) / stamp.strftime("%Y-%m-%d")
    day_dir.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
    return day_dir / f"{stamp.strftime('%H%M%S')}.lst"


def format_record(record: PeerRecord, location: str) -> str:
    """Format one output line (without newline)."""
    return f"{record.identity_str}, {record.address}, {location}"


def render_records(records: Iterable[PeerRecord], locate: Callable[[str], str]) -> str:
    """Render records in order, resolving each location with ``locate``."""
    return "".join(
        format_record(record, locate(record.address.host)) + "\n"
        for record in records
    )


def atomic_write(path: Path, content: str) -> None:
    """
    Write ``content`` to ``path`` via a temporary file and rename.

    On failure the temporary file is removed and the error re-raised;
    ``path`` is left untouched.
    """
    temp_path = path.with_name(path.name + TEMP_FILE_EXT)
    try:
        with open(temp_path, "w", encoding="utf-8") as fp:
            fp.write(content)
            fp.flush()
            os.fsync(fp.fileno())
        os.replace(temp_path, path)
    except OSError:
        with contextlib.suppress(OSError):
            temp_path.unlink()
        raise


def dump_records(
    data_dir: Path,
    stamp: datetime,
    records: Iterable[PeerRecord],
    locate: Callable[[str], str],
) -> Path:
    """
    Write a node list for a session created at ``stamp``.

    Returns:
        The path written

    Raises:
        OSError: On any directory, write or rename failure
    """
    path = data_filename(data_dir, stamp)
    atomic_write(path, render_records(records, locate))
    return path
