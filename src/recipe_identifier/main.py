#!/usr/bin/env python3
"""
Recipe Identifier: CLI app to find which film-simulation recipe produced each photo.

Workflow:
 1. export        Read the camera settings of every JPG in a folder into a CSV.
 2. identify      Match that CSV against your recipe table (matched_recipes.csv,
                  unmatched_jpgs.csv).
 3. add-keywords  Write the matched recipe names into each photo's Keywords.

Requirements:
 - Exiftool installed and available in PATH (export, add-keywords, add-film-mode).

"""

import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated, Literal, NoReturn

from cyclopts import App, Parameter
from loguru import logger

from recipe_identifier.errors import RecipeIdentifierError
from recipe_identifier.exif import (
    DEFAULT_IMAGE_EXTENSIONS,
    add_film_mode_keywords,
    add_recipe_keywords,
    export_metadata,
)
from recipe_identifier.files import clean_dropped_path
from recipe_identifier.matching import identify_recipes


LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL", "OFF"]

FileLogLevel = Annotated[
    LogLevel,
    Parameter(name="--file-log-level", help="Log level for file (use 'OFF' to disable)"),
]
ConsoleLogLevel = Annotated[
    LogLevel,
    Parameter(name="--console-log-level", help="Log level for console (use 'OFF' to disable)"),
]
LogFolder = Annotated[
    Path,
    Parameter(name=("--log-folder",), help="Folder where log files are stored"),
]
ImageExtensions = Annotated[
    str,
    Parameter(
        name=("--ext", "--extensions"),
        help="Comma-separated image file extensions to process (case insensitive)",
    ),
]
Backup = Annotated[
    bool,
    Parameter(
        name=("--backup",),
        negative="--no-backup",
        help="Let ExifTool keep an _original backup of every modified photo",
    ),
]


# Cyclopts app
__version__ = "0.1.0"
app = App(
    name="recipe-identifier",
    version=__version__,
    help="Identify the film-simulation recipe behind each photo and tag it.",
)


def setup_logging(
    file_log_level: LogLevel = "DEBUG",
    console_log_level: LogLevel = "INFO",
    log_folder: Path = Path("logs"),
) -> None:
    """
    Configure Loguru for both console and file logging.

    Args:
        file_log_level: Log level for file (use 'OFF' to disable)
        console_log_level: Log level for console (use 'OFF' to disable)
        log_folder: Directory where log files are stored

    """
    # Remove default handler
    logger.remove()

    # File logging, one timestamped file per run
    if file_log_level != "OFF":
        log_folder.mkdir(parents=True, exist_ok=True)
        log_file = log_folder / Path(
            datetime.now(tz=UTC).strftime("%Y%m%d%H%M%S-recipe_identifier.log"),
        )
        logger.add(
            log_file,
            level=file_log_level,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{name:<8}:{function:<25}:{line:>4} | "
                "{message:<40} | "
                "{extra}"
            ),
            rotation="500 MB",
            retention="10 days",
            compression="zip",
        )

    # Console logging
    if console_log_level != "OFF":
        logger.add(
            sys.stderr,
            level=console_log_level,
            colorize=True,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <7}</level> | "
                "<level>{message:<40.50}</level> | "
                "<yellow>{extra}</yellow>"
            ),
        )


def _abort(event: str, exc: Exception) -> NoReturn:
    logger.error(event, error=str(exc))
    raise SystemExit(1) from exc


@app.command(name="export")
def export(
    input_dir: Annotated[
        Path,
        Parameter(name=("--input", "-i"), help="Folder with photos (searched recursively)"),
    ],
    output_dir: Annotated[
        Path,
        Parameter(name=("--output", "-o"), help="Destination folder for the metadata CSV"),
    ],
    *,
    image_extensions: ImageExtensions = DEFAULT_IMAGE_EXTENSIONS,
    overwrite: Annotated[
        bool,
        Parameter(name=("--overwrite",), help="Replace an existing CSV with the same name"),
    ] = False,
    file_log_level: FileLogLevel = "DEBUG",
    console_log_level: ConsoleLogLevel = "INFO",
    log_folder: LogFolder = Path("logs"),
) -> None:
    """
    Create a CSV with the recipe-relevant EXIF metadata of every photo in a folder.

    Output: pics_metadata_<YYYYmmdd_HHMMSS>.csv in the destination folder, one row per photo
    (SourceFile, FileName, Make, Model, DateTimeOriginal, the 14 recipe settings, Keywords).

    Examples:
        recipe-identifier export -i ./photos -o ./csv

    """
    setup_logging(file_log_level, console_log_level, log_folder)
    input_dir = clean_dropped_path(input_dir)
    output_dir = clean_dropped_path(output_dir)
    logger.info(
        "starting_metadata_export",
        input_dir=str(input_dir),
        output_dir=str(output_dir),
        extensions=image_extensions,
        overwrite=overwrite,
    )
    try:
        export_metadata(
            input_dir,
            output_dir,
            image_extensions=image_extensions,
            overwrite=overwrite,
        )
    except RecipeIdentifierError as exc:
        _abort("metadata_export_failed", exc)


@app.command(name="identify")
def identify(
    metadata_csv: Annotated[
        Path,
        Parameter(name=("--metadata", "-m"), help="CSV with your pictures' metadata"),
    ],
    recipes_csv: Annotated[
        Path,
        Parameter(name=("--recipes", "-r"), help="CSV with your recipes (filmsim + settings)"),
    ],
    output_dir: Annotated[
        Path,
        Parameter(name=("--output", "-o"), help="Folder for matched/unmatched CSVs"),
    ],
    *,
    file_log_level: FileLogLevel = "DEBUG",
    console_log_level: ConsoleLogLevel = "INFO",
    log_folder: LogFolder = Path("logs"),
) -> None:
    """
    Identify film recipes based on the metadata of photos.

    Photos and recipes are matched on FilmMode, DevelopmentDynamicRange, ColorChromeEffect,
    ColorChromeFXBlue, GrainEffectSize, GrainEffectRoughness, ColorTemperature,
    WhiteBalanceFineTune, HighlightTone, ShadowTone, Saturation, Sharpness, NoiseReduction
    and Clarity. Values must match exactly. Missing or empty settings count as NA.

    Outputs:
    - matched_recipes.csv (SourceFile, FileName, filmsim)
    - unmatched_jpgs.csv (FileName), only when some photos found no recipe

    Examples:
        recipe-identifier identify -m pics_metadata.csv -r recipes.csv -o ./out

    """
    setup_logging(file_log_level, console_log_level, log_folder)
    metadata_csv = clean_dropped_path(metadata_csv)
    recipes_csv = clean_dropped_path(recipes_csv)
    output_dir = clean_dropped_path(output_dir)
    logger.info(
        "starting_recipe_identification",
        metadata=str(metadata_csv),
        recipes=str(recipes_csv),
        output_dir=str(output_dir),
    )
    try:
        identify_recipes(metadata_csv, recipes_csv, output_dir)
    except RecipeIdentifierError as exc:
        _abort("recipe_identification_failed", exc)


@app.command(name="add-keywords")
def add_keywords(
    matched_csv: Annotated[
        Path,
        Parameter(
            name=("--matched", "-m"),
            help="CSV with SourceFile and filmsim columns (typically matched_recipes.csv)",
        ),
    ],
    *,
    backup: Backup = False,
    mirror_subject: Annotated[
        bool,
        Parameter(
            name=("--xmp-subject",),
            negative="--no-xmp-subject",
            help="Also add the recipe to XMP-dc:Subject",
        ),
    ] = False,
    file_log_level: FileLogLevel = "DEBUG",
    console_log_level: ConsoleLogLevel = "INFO",
    log_folder: LogFolder = Path("logs"),
) -> None:
    """
    Add each photo's recipe to its Keywords tag.

    An identical keyword already on the photo is removed first, so re-running never creates
    duplicates.

    Exit status: returns 1 if the CSV is invalid or any file fails.

    Examples:
        recipe-identifier add-keywords -m ./out/matched_recipes.csv

    """
    setup_logging(file_log_level, console_log_level, log_folder)
    matched_csv = clean_dropped_path(matched_csv)
    logger.info(
        "starting_keyword_update",
        matched=str(matched_csv),
        backup=backup,
        mirror_subject=mirror_subject,
    )
    try:
        report = add_recipe_keywords(matched_csv, backup=backup, mirror_subject=mirror_subject)
    except RecipeIdentifierError as exc:
        _abort("keyword_update_failed", exc)

    if report.failed:
        logger.error("files_failed", files=report.failed)
        raise SystemExit(1)
    logger.success("keywords_updated", updated=report.updated, skipped=report.skipped)


@app.command(name="add-film-mode")
def add_film_mode(
    input_dir: Annotated[
        Path,
        Parameter(name=("--input", "-i"), help="Folder with photos"),
    ],
    *,
    image_extensions: ImageExtensions = DEFAULT_IMAGE_EXTENSIONS,
    recursive: Annotated[
        bool,
        Parameter(
            name=("--recursive", "-r"),
            negative="--no-recursive",
            help="Process files in subdirectories recursively",
        ),
    ] = True,
    backup: Backup = False,
    file_log_level: FileLogLevel = "DEBUG",
    console_log_level: ConsoleLogLevel = "INFO",
    log_folder: LogFolder = Path("logs"),
) -> None:
    """
    Copy the FilmMode tag of each photo into its Keywords.

    This permanently modifies the photos unless --backup is given.

    Examples:
        recipe-identifier add-film-mode -i ./photos

    """
    setup_logging(file_log_level, console_log_level, log_folder)
    input_dir = clean_dropped_path(input_dir)
    logger.info(
        "starting_film_mode_keywords",
        input_dir=str(input_dir),
        extensions=image_extensions,
        recursive=recursive,
        backup=backup,
    )
    try:
        report = add_film_mode_keywords(
            input_dir,
            image_extensions=image_extensions,
            recursive=recursive,
            backup=backup,
        )
    except RecipeIdentifierError as exc:
        _abort("film_mode_keywords_failed", exc)

    if report.failed:
        logger.error("files_failed", files=report.failed)
        raise SystemExit(1)
    logger.success("keywords_updated", updated=report.updated, skipped=report.skipped)


if __name__ == "__main__":
    app()
