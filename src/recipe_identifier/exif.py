"""
ExifTool wrappers: export recipe settings to CSV and write recipe names as keywords.

ExifTool is started without ``-G`` and ``-n``, so tags come back under their plain names
("FilmMode") with human-readable values ("Classic Chrome", "+1 (medium hard)"). Those
are the strings users copy into their recipe tables.
"""

import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pandas as pd
from exiftool import ExifToolHelper  # type: ignore[attr-defined]
from exiftool.exceptions import ExifToolException
from loguru import logger
from pydantic import BaseModel, Field

from recipe_identifier.errors import (
    ExifToolCommandError,
    ExifToolMissingError,
    MetadataExportError,
)
from recipe_identifier.files import validate_output_dir, write_csv
from recipe_identifier.matching import RECIPE_COLUMN, SOURCE_COLUMN, read_table


if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence


DEFAULT_EXIFTOOL = os.getenv("EXIFTOOL_PATH", "exiftool")
DEFAULT_IMAGE_EXTENSIONS = os.getenv("IMAGE_EXTENSIONS", "jpg,jpeg")
DEFAULT_BATCH_SIZE = int(os.getenv("EXPORT_BATCH_SIZE", "250"))

EXPORT_TAGS = (
    "FileName",
    "Make",
    "Model",
    "DateTimeOriginal",
    "FilmMode",
    "GrainEffectSize",
    "GrainEffectRoughness",
    "ColorChromeEffect",
    "ColorChromeFXBlue",
    "WhiteBalance",
    "ColorTemperature",
    "WhiteBalanceFineTune",
    "DevelopmentDynamicRange",
    "HighlightTone",
    "ShadowTone",
    "Saturation",
    "Sharpness",
    "NoiseReduction",
    "Clarity",
    "Keywords",
)
KEYWORD_TAG = "Keywords"
SUBJECT_TAG = "XMP-dc:Subject"
FILM_MODE_TAG = "FilmMode"

# pyexiftool defaults to ["-G", "-n"]; recipe tables hold printed values.
EXIFTOOL_COMMON_ARGS: list[str] = []


class KeywordAssignment(BaseModel):
    """One label to append to one photo's keywords."""

    source_file: Path
    label: str


class KeywordWriteReport(BaseModel):
    """Result of a keyword writing pass."""

    updated: int = 0
    skipped: int = 0
    failed: list[str] = Field(default_factory=list)


def require_exiftool(executable: str = DEFAULT_EXIFTOOL) -> str:
    """Return the resolved ExifTool path or raise when it is not installed."""
    resolved = shutil.which(executable)
    if resolved is None:
        raise ExifToolMissingError(
            f"ExifTool is not installed or not in PATH ({executable}). "
            "Install with: brew install exiftool (macOS) or apt install exiftool (Linux)",
        )
    logger.debug("exiftool_found", path=resolved)
    return resolved


def open_exiftool(executable: str = DEFAULT_EXIFTOOL) -> ExifToolHelper:
    """
    Start a persistent ExifTool process, to be used as a context manager.

    Raises:
        ExifToolCommandError: The process could not be started.

    """
    try:
        return ExifToolHelper(  # type: ignore[no-untyped-call]
            executable=executable,
            common_args=EXIFTOOL_COMMON_ARGS,
        )
    except (OSError, ExifToolException) as e:
        raise ExifToolCommandError(f"Could not start {executable}: {e}") from e


def _format_metadata_value(value: Any) -> str:  # noqa: ANN401
    """
    Coerce metadata values (lists, numbers) into a CSV cell.

    Examples:
        >>> _format_metadata_value(["Fuji", "", "Velvia"])
        'Fuji, Velvia'
        >>> _format_metadata_value(6500)
        '6500'
        >>> _format_metadata_value(None)
        ''

    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple, set)):
        return ", ".join(str(v) for v in value if str(v).strip())
    return str(value)


def parse_extensions(image_extensions: str) -> set[str]:
    """
    Normalize comma-separated extensions into a lower-cased set like {".jpg", ".jpeg"}.

    Examples:
        >>> sorted(parse_extensions("JPG, .jpeg ,"))
        ['.jpeg', '.jpg']

    """
    return {
        f".{ext.strip().lstrip('.').lower()}"
        for ext in image_extensions.split(",")
        if ext.strip().lstrip(".")
    }


def find_images(root: Path, extensions: set[str], *, recursive: bool = True) -> list[Path]:
    """Return the sorted image files under ``root`` matching ``extensions`` (case-insensitive)."""
    candidates = root.rglob("*") if recursive else root.glob("*")
    return sorted(p for p in candidates if p.is_file() and p.suffix.lower() in extensions)


def _batched(items: "Sequence[Path]", size: int) -> "Iterable[Sequence[Path]]":
    step = max(size, 1)
    for start in range(0, len(items), step):
        yield items[start : start + step]


def read_tags(
    et: ExifToolHelper,
    files: "Sequence[Path]",
    tags: "Sequence[str]",
) -> list[dict[str, Any]]:
    """
    Read ``tags`` from ``files`` with a running ExifTool (one dict per file).

    Raises:
        MetadataExportError: ExifTool failed or returned unusable output.

    """
    if not files:
        return []
    try:
        blocks = et.get_tags(files=[str(p) for p in files], tags=list(tags))
    except (ValueError, TypeError, ExifToolException) as e:
        logger.exception("exif_extraction_failed", error=str(e))
        raise MetadataExportError(f"ExifTool could not read metadata: {e}") from e
    return [block for block in blocks if isinstance(block, dict)]


def _block_to_row(block: dict[str, Any]) -> dict[str, str]:
    row = {SOURCE_COLUMN: _format_metadata_value(block.get(SOURCE_COLUMN))}
    for tag in EXPORT_TAGS:
        row[tag] = _format_metadata_value(block.get(tag))
    return row


def read_metadata_rows(
    files: "Sequence[Path]",
    *,
    executable: str = DEFAULT_EXIFTOOL,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> list[dict[str, str]]:
    """Read the export tags of every file, one row per file, in batches on one ExifTool."""
    rows: list[dict[str, str]] = []
    done = 0
    with open_exiftool(executable) as et:
        for batch in _batched(files, batch_size):
            rows.extend(_block_to_row(block) for block in read_tags(et, batch, EXPORT_TAGS))
            done += len(batch)
            logger.info("exif_batch_read", progress=f"{done}/{len(files)}")
    return rows


def export_metadata(
    root: Path,
    output_dir: Path,
    *,
    image_extensions: str = DEFAULT_IMAGE_EXTENSIONS,
    recursive: bool = True,
    overwrite: bool = False,
    output_name: str | None = None,
    executable: str = DEFAULT_EXIFTOOL,
) -> Path:
    """
    Export the recipe-defining tags of every image under ``root`` to a CSV.

    Args:
        root: Folder with photos
        output_dir: Existing, writable destination folder
        image_extensions: Comma-separated extensions to include (case insensitive)
        recursive: Include subdirectories
        overwrite: Replace an existing CSV with the same name
        output_name: File name to use instead of ``pics_metadata_<timestamp>.csv``
        executable: ExifTool executable name or path

    Returns:
        Path of the written CSV (``SourceFile`` followed by the export tags).

    """
    if not root.is_dir():
        raise MetadataExportError(f"Input path is empty or not a directory: {root}")
    validate_output_dir(output_dir)
    resolved = require_exiftool(executable)

    ext_set = parse_extensions(image_extensions)
    if not ext_set:
        raise MetadataExportError(f"No valid extensions provided: {image_extensions!r}")
    images = find_images(root, ext_set, recursive=recursive)
    if not images:
        kinds = "/".join(sorted(ext.lstrip(".").upper() for ext in ext_set))
        raise MetadataExportError(f"No {kinds} files found in {root}")
    logger.info("image_files_discovered", count=len(images), recursive=recursive)

    name = output_name or datetime.now().astimezone().strftime("pics_metadata_%Y%m%d_%H%M%S.csv")
    target = output_dir / name
    if target.exists() and not overwrite:
        raise MetadataExportError(f"File exists, pass --overwrite to replace it: {target}")

    logger.info("starting_exif_extraction", hint="This may take a moment")
    rows = read_metadata_rows(images, executable=resolved)
    if not rows:
        logger.warning("no_metadata_extracted")

    table = pd.DataFrame(rows, columns=[SOURCE_COLUMN, *EXPORT_TAGS])
    write_csv(table, target)
    logger.info("metadata_export_saved", file=str(target), rows=len(table))
    return target


def load_keyword_assignments(matched_csv: Path) -> tuple[list[KeywordAssignment], int]:
    """
    Read ``SourceFile``/``filmsim`` pairs from a matched-recipes CSV.

    Returns:
        Tuple of (assignments, skipped_rows). Rows with an empty path or label are skipped.

    """
    table = read_table(
        matched_csv,
        label="Matched recipes",
        required_columns=(SOURCE_COLUMN, RECIPE_COLUMN),
    )
    assignments: list[KeywordAssignment] = []
    skipped = 0
    for source, label in zip(table[SOURCE_COLUMN], table[RECIPE_COLUMN], strict=True):
        if not source or not label:
            skipped += 1
            continue
        assignments.append(KeywordAssignment(source_file=Path(source), label=label))
    logger.info("keyword_assignments_loaded", count=len(assignments), skipped=skipped)
    return assignments, skipped


def _keyword_args(label: str, tags: "Iterable[str]") -> list[str]:
    """
    Build remove-then-append arguments so a label is never stored twice.

    Examples:
        >>> _keyword_args("McCurry", ["Keywords"])
        ['-Keywords-=McCurry', '-Keywords+=McCurry']

    """
    args: list[str] = []
    for tag in tags:
        args.extend([f"-{tag}-={label}", f"-{tag}+={label}"])
    return args


def write_keywords(
    assignments: "Sequence[KeywordAssignment]",
    *,
    backup: bool = False,
    mirror_subject: bool = False,
    executable: str = DEFAULT_EXIFTOOL,
) -> KeywordWriteReport:
    """
    Append each label to its photo's keywords, removing an identical value first.

    Args:
        assignments: (photo, label) pairs
        backup: If True, let ExifTool keep an ``_original`` backup of each photo
        mirror_subject: Also update XMP-dc:Subject (Lightroom reads it for JPEGs)
        executable: ExifTool executable name or path

    Returns:
        KeywordWriteReport. Files ExifTool could not update are listed in ``failed``;
        processing continues past them.

    """
    report = KeywordWriteReport()
    if not assignments:
        logger.warning("no_keywords_to_write")
        return report

    tags = [KEYWORD_TAG, SUBJECT_TAG] if mirror_subject else [KEYWORD_TAG]
    params = [] if backup else ["-overwrite_original"]
    total = len(assignments)

    with open_exiftool(executable) as et:
        for idx, assignment in enumerate(assignments, start=1):
            with logger.contextualize(file=assignment.source_file.name):
                try:
                    et.execute(
                        *params,
                        *_keyword_args(assignment.label, tags),
                        str(assignment.source_file),
                    )
                except (ValueError, TypeError, ExifToolException) as e:
                    logger.error("keyword_write_failed", index=f"{idx}/{total}", error=str(e))
                    report.failed.append(str(assignment.source_file))
                    continue
                if et.last_stderr:
                    logger.warning("exiftool_reported_problems", stderr=et.last_stderr.strip())
                report.updated += 1
                logger.info("keyword_written", index=f"{idx}/{total}", label=assignment.label)

    logger.info(
        "keyword_summary",
        total=total,
        updated=report.updated,
        failed=len(report.failed),
        backup_created=backup,
    )
    return report


def add_recipe_keywords(
    matched_csv: Path,
    *,
    backup: bool = False,
    mirror_subject: bool = False,
    executable: str = DEFAULT_EXIFTOOL,
) -> KeywordWriteReport:
    """Write every matched recipe name from ``matched_recipes.csv`` into its photo's keywords."""
    assignments, skipped = load_keyword_assignments(matched_csv)
    resolved = require_exiftool(executable)
    report = write_keywords(
        assignments,
        backup=backup,
        mirror_subject=mirror_subject,
        executable=resolved,
    )
    report.skipped = skipped
    return report


def read_film_modes(
    files: "Sequence[Path]",
    *,
    executable: str = DEFAULT_EXIFTOOL,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> dict[Path, str]:
    """Return the FilmMode of each photo that has one."""
    modes: dict[Path, str] = {}
    with open_exiftool(executable) as et:
        for batch in _batched(files, batch_size):
            for block in read_tags(et, batch, [FILM_MODE_TAG]):
                value = _format_metadata_value(block.get(FILM_MODE_TAG)).strip()
                if value:
                    modes[Path(str(block[SOURCE_COLUMN]))] = value
    return modes


def add_film_mode_keywords(
    root: Path,
    *,
    image_extensions: str = DEFAULT_IMAGE_EXTENSIONS,
    recursive: bool = True,
    backup: bool = False,
    executable: str = DEFAULT_EXIFTOOL,
) -> KeywordWriteReport:
    """
    Copy each photo's FilmMode into its keywords.

    Photos without a FilmMode tag are counted as skipped.
    """
    if not root.is_dir():
        raise MetadataExportError(f"'{root}' is not a valid directory")
    resolved = require_exiftool(executable)

    ext_set = parse_extensions(image_extensions)
    images = find_images(root, ext_set, recursive=recursive)
    if not images:
        raise MetadataExportError(f"No image files ({image_extensions}) found in {root}")
    logger.info("image_files_discovered", count=len(images), recursive=recursive)

    modes = read_film_modes(images, executable=resolved)
    for path, mode in list(modes.items())[:10]:
        logger.debug("film_mode_preview", file=path.name, film_mode=mode)

    assignments = [KeywordAssignment(source_file=path, label=mode) for path, mode in modes.items()]
    report = write_keywords(assignments, backup=backup, executable=resolved)
    report.skipped = len(images) - len(assignments)
    if report.skipped:
        logger.info("photos_without_film_mode", count=report.skipped)
    return report
