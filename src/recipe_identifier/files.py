"""Path validation and CSV writing helpers shared by the commands."""

import os
import tempfile
from pathlib import Path

import pandas as pd
from loguru import logger

from recipe_identifier.errors import InputFileError

DEFAULT_LARGE_FILE_MB = int(os.getenv("LARGE_FILE_WARNING_MB", "30"))


def clean_dropped_path(path: Path) -> Path:
    """
    Strip the wrapping quotes a terminal adds when a file is dragged onto it.

    Examples:
        >>> clean_dropped_path(Path('"/photos/tags.csv"'))
        PosixPath('/photos/tags.csv')

    """
    raw = str(path).strip()
    for quote in ('"', "'"):
        if len(raw) >= 2 and raw.startswith(quote) and raw.endswith(quote):  # noqa: PLR2004
            raw = raw[1:-1]
            break
    return Path(raw)


def validate_output_dir(folder: Path) -> None:
    """Fail fast when the output folder is missing or not writable."""
    if not folder.is_dir():
        raise InputFileError(f"Output folder not found: {folder}")
    if not os.access(folder, os.W_OK):
        raise InputFileError(f"Output folder not writable: {folder}")


def is_large_file(path: Path, threshold_mb: int = DEFAULT_LARGE_FILE_MB) -> bool:
    """Log a performance warning and return True when the file exceeds the threshold."""
    size = path.stat().st_size
    if size <= threshold_mb * 1024 * 1024:
        return False
    logger.warning(
        "large_input_file",
        file=str(path),
        size_mb=round(size / (1024 * 1024), 1),
        threshold_mb=threshold_mb,
        hint="Processing may be slow",
    )
    return True


def write_csv(table: pd.DataFrame, target: Path) -> Path:
    """
    Write a table as UTF-8 CSV, replacing the target only once the write succeeded.

    The data goes to a temporary file next to the target first, which is removed on
    any failure, so an existing output is never left half-written.
    """
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.stem}-", suffix=".tmp", dir=target.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            table.to_csv(handle, index=False, lineterminator="\n")
        os.replace(tmp_path, target)
    finally:
        tmp_path.unlink(missing_ok=True)
    logger.debug("csv_written", file=str(target), rows=len(table))
    return target
