"""
Snapshot discovery for the Bronze layer.

A 'category' is a named glob pattern over the snapshot directory. Files are
ordered by filename, which puts daily snapshots in calendar order because the
date stamp is the last part of every name.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

from ..dates import boundary_from_files
from ..errors import ValidationError


@dataclass(frozen=True)
class Category:
    """
    A registered set of snapshot files.

    Attributes:
        name (str): Category name (e.g., 'steam_queries').
        directory (Path): Where the snapshots live.
        pattern (str): Glob pattern relative to `directory`.
        files (Tuple[Path, ...]): Matching files, sorted by filename.
    """
    name: str
    directory: Path
    pattern: str
    files: Tuple[Path, ...]

    @property
    def boundary_date(self) -> str:
        """The canonical date of the earliest snapshot (the left-censoring boundary)."""
        return boundary_from_files(self.files)


def discover(name: str, directory: Path, pattern: str) -> Category:
    """
    Resolves a glob pattern to the sorted list of snapshot files.

    Args:
        name (str): The category name.
        directory (Path): The snapshot directory.
        pattern (str): Glob pattern, e.g. '*steam*.csv.gz'.

    Returns:
        Category: The registered category.

    Raises:
        ValidationError: If the directory does not exist or nothing matches.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise ValidationError(f"Snapshot directory not found: {directory}")

    files: List[Path] = sorted(
        (p for p in directory.glob(pattern) if p.is_file()),
        key=lambda p: p.name,
    )
    if not files:
        raise ValidationError(f"No snapshot files in {directory} matching '{pattern}'")

    return Category(name=name, directory=directory, pattern=pattern, files=tuple(files))
