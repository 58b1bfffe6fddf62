"""
manifest.py
~~~~~~~~~~~

Reader for the label manifest: a CSV file with ``origin, group, label, file``
columns, one row per image.
"""

import csv
import logging
from typing import List, NamedTuple, Optional

from digitnet.errors import ManifestError

logger = logging.getLogger(__name__)

HEADER = ('origin', 'group', 'label', 'file')


class ManifestEntry(NamedTuple):
    """One manifest row."""

    origin: str
    group: str
    label: int
    file: str


def _is_header(row: List[str]) -> bool:
    return [cell.strip().lower() for cell in row[:len(HEADER)]] == list(HEADER)


def read_manifest(path: str, origin: Optional[str] = None) -> List[ManifestEntry]:
    """
    Read manifest entries in file order.

    Args:
        path: CSV file path
        origin: If given, only rows with this origin tag are parsed and
            returned; other rows are skipped without looking at their labels

    Returns:
        list: ManifestEntry per selected row, in file order

    Raises:
        ManifestError: If the file is missing or a selected row is malformed
    """
    entries = []
    try:
        with open(path, newline='', encoding='utf-8') as f:
            for line_no, row in enumerate(csv.reader(f), start=1):
                if not row or (line_no == 1 and _is_header(row)):
                    continue
                if len(row) < len(HEADER):
                    raise ManifestError(
                        f"{path}:{line_no}: expected {len(HEADER)} columns, "
                        f"got {len(row)}"
                    )

                row_origin, group, label, file = row[:len(HEADER)]
                if origin is not None and row_origin != origin:
                    continue

                try:
                    label_value = int(label)
                except ValueError:
                    raise ManifestError(
                        f"{path}:{line_no}: label {label!r} is not an integer"
                    ) from None

                entries.append(ManifestEntry(row_origin, group, label_value, file))
    except OSError as e:
        raise ManifestError(f"Cannot read manifest {path}: {e}") from e
    except csv.Error as e:
        raise ManifestError(f"Malformed manifest {path}: {e}") from e

    logger.info(f"Read {len(entries)} manifest entries from {path}")
    return entries
