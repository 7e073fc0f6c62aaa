"""
Match photo metadata against a table of film-simulation recipes.

A recipe is identified by 14 camera settings (the join attributes). Photos and
recipes are joined on the exact text of those settings: no numeric, unit, case or
whitespace normalization happens, values must match verbatim.

Both tables are reconciled before joining. Join attributes missing from a header are
added and filled with the sentinel ``"NA"``, and empty cells in join attributes get the
same sentinel, so "not set" on one side equals "not set" on the other.
"""

import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import pandas as pd
from loguru import logger
from pydantic import BaseModel, Field

from recipe_identifier.errors import InputFileError, JoinEngineError
from recipe_identifier.files import is_large_file, validate_output_dir, write_csv


if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence


JOIN_ATTRIBUTES = (
    "FilmMode",
    "DevelopmentDynamicRange",
    "ColorChromeEffect",
    "ColorChromeFXBlue",
    "GrainEffectSize",
    "GrainEffectRoughness",
    "ColorTemperature",
    "WhiteBalanceFineTune",
    "HighlightTone",
    "ShadowTone",
    "Saturation",
    "Sharpness",
    "NoiseReduction",
    "Clarity",
)
NA_SENTINEL = "NA"

SOURCE_COLUMN = "SourceFile"
FILE_NAME_COLUMN = "FileName"
RECIPE_COLUMN = "filmsim"
MATCHED_COLUMNS = (SOURCE_COLUMN, FILE_NAME_COLUMN, RECIPE_COLUMN)
UNMATCHED_COLUMNS = (FILE_NAME_COLUMN,)

MATCHED_FILENAME = "matched_recipes.csv"
UNMATCHED_FILENAME = "unmatched_jpgs.csv"

METADATA_REQUIRED = (SOURCE_COLUMN, FILE_NAME_COLUMN)
RECIPES_REQUIRED = (RECIPE_COLUMN,)


class MatchSummary(BaseModel):
    """Counts and warnings gathered while matching one metadata table."""

    input_photos: int
    matched_rows: int
    matched_photos: int
    unmatched_photos: int
    missing_in_metadata: list[str] = Field(default_factory=list)
    missing_in_recipes: list[str] = Field(default_factory=list)
    ambiguous: dict[str, list[str]] = Field(default_factory=dict)

    @property
    def no_matches(self) -> bool:
        """True when not a single photo matched a recipe."""
        return self.matched_rows == 0

    @property
    def more_matches_than_photos(self) -> bool:
        """True when duplicate recipe definitions fanned out into extra rows."""
        return self.matched_rows > self.input_photos


@dataclass(frozen=True)
class MatchResult:
    """Matched (photo, recipe) pairs, unmatched file names and the run summary."""

    matched: pd.DataFrame
    unmatched: pd.DataFrame
    summary: MatchSummary


class IdentifyReport(BaseModel):
    """Outcome of a complete identify run, including where the outputs went."""

    summary: MatchSummary
    matched_csv: Path
    unmatched_csv: Path | None = None
    large_files: list[Path] = Field(default_factory=list)


def _require_columns(table: pd.DataFrame, columns: "Iterable[str]", description: str) -> None:
    missing = [column for column in columns if column not in table.columns]
    if missing:
        raise InputFileError(
            f"{description} is missing required column(s): {', '.join(missing)}",
        )


def _first_wide_row(path: Path, width: int) -> int | None:
    """Return the 1-based number of the first data row with more fields than the header."""
    try:
        overflow = pd.read_csv(
            path,
            header=None,
            skiprows=1,
            names=list(range(width + 1)),
            usecols=[width],
            dtype=str,
            keep_default_na=False,
            encoding="utf-8-sig",
            index_col=False,
        )
    except pd.errors.EmptyDataError:
        return None
    present = overflow[width].notna().to_numpy().nonzero()[0]
    return int(present[0]) + 1 if len(present) else None


def read_table(
    path: Path,
    *,
    label: str,
    required_columns: "Iterable[str]" = (),
) -> pd.DataFrame:
    """
    Load a CSV with every cell as text.

    ``keep_default_na=False`` keeps a literal ``NA`` in the file as the string ``"NA"``
    instead of turning it into a missing value, so the sentinel survives a round trip.
    ``index_col=False`` stops pandas from turning the first column into the index when
    data rows carry one more field than the header; such rows are rejected instead.

    Args:
        path: CSV file to read (UTF-8, optional BOM, comma-delimited, header required)
        label: Human-readable table name used in error messages ("Metadata", "Recipes")
        required_columns: Identifying columns that must be present in the header

    Returns:
        DataFrame of strings. Cells missing from short rows become empty strings.

    Raises:
        InputFileError: The file is missing, unreadable, empty, header-less or lacks a
            required column.
        JoinEngineError: pandas could not parse the file, or a data row is wider than
            the header.

    """
    if not path.is_file():
        raise InputFileError(f"{label} file not found: {path}")
    if not os.access(path, os.R_OK):
        raise InputFileError(f"{label} file is not readable: {path}")
    if path.stat().st_size == 0:
        raise InputFileError(f"{label} CSV is empty or has no header: {path}")

    try:
        with warnings.catch_warnings():
            # Extra fields are reported below as a parse failure.
            warnings.simplefilter("ignore", pd.errors.ParserWarning)
            table = pd.read_csv(
                path,
                dtype=str,
                keep_default_na=False,
                encoding="utf-8-sig",
                index_col=False,
            )
            wide_row = _first_wide_row(path, len(table.columns)) if len(table) else None
    except pd.errors.EmptyDataError as exc:
        raise InputFileError(f"{label} CSV is empty or has no header: {path}") from exc
    except (pd.errors.ParserError, UnicodeDecodeError) as exc:
        raise JoinEngineError(f"Could not parse {label.lower()} CSV {path}: {exc}") from exc
    if wide_row is not None:
        raise JoinEngineError(
            f"Could not parse {label.lower()} CSV {path}: data row {wide_row} has more "
            f"fields than the header ({len(table.columns)})",
        )

    _require_columns(table, required_columns, f"{label} CSV {path}")
    logger.debug("table_loaded", table=label, file=str(path), rows=len(table))
    return table.fillna("")


def find_missing_attributes(
    table: pd.DataFrame,
    attributes: "Sequence[str]" = JOIN_ATTRIBUTES,
) -> list[str]:
    """
    Return the join attributes absent from the table header, in attribute order.

    Examples:
        >>> find_missing_attributes(pd.DataFrame(columns=["FilmMode"]), ["FilmMode", "Clarity"])
        ['Clarity']

    """
    return [attribute for attribute in attributes if attribute not in table.columns]


def reconcile_schema(
    table: pd.DataFrame,
    *,
    table_name: str,
    attributes: "Sequence[str]" = JOIN_ATTRIBUTES,
) -> tuple[pd.DataFrame, list[str]]:
    """
    Make a table join-compatible without touching its other columns.

    Missing join attributes are added as columns of ``"NA"``. Empty, blank or missing
    cells in the join attributes are replaced with ``"NA"`` too. Non-empty values are
    kept verbatim, including their surrounding whitespace.

    Args:
        table: Raw metadata or recipe table. It is not modified.
        table_name: Name used in the warning ("metadata" or "recipes")
        attributes: Ordered join attributes

    Returns:
        Tuple of (reconciled_table, missing_attributes).

    """
    missing = find_missing_attributes(table, attributes)
    reconciled = table.copy()
    for attribute in missing:
        reconciled[attribute] = NA_SENTINEL

    for attribute in attributes:
        values = reconciled[attribute].fillna("").astype(str)
        reconciled[attribute] = values.mask(values.str.strip() == "", NA_SENTINEL)

    if missing:
        hint = (
            "Missing columns are added to the metadata and filled with NA"
            if table_name == "metadata"
            else "Missing settings are treated as NA and only match photos without them"
        )
        logger.warning(
            "missing_join_columns",
            table=table_name,
            count=len(missing),
            columns=missing,
            hint=hint,
        )
    return reconciled, missing


def reorder_columns(table: pd.DataFrame, leading: "Sequence[str]") -> pd.DataFrame:
    """
    Put ``leading`` columns first, keeping every other column in its original order.

    Examples:
        >>> reorder_columns(pd.DataFrame(columns=["a", "b", "c"]), ["c", "a"]).columns.tolist()
        ['c', 'a', 'b']

    """
    rest = [column for column in table.columns if column not in leading]
    return table[[*leading, *rest]]


def _find_ambiguous(matched: pd.DataFrame) -> dict[str, list[str]]:
    """Map each photo matched by more than one recipe row to the recipe names."""
    repeated = matched[matched.duplicated(SOURCE_COLUMN, keep=False)]
    if repeated.empty:
        return {}
    grouped = repeated.groupby(SOURCE_COLUMN, sort=False)[RECIPE_COLUMN]
    return {str(source): [str(name) for name in names] for source, names in grouped}


def match_recipes(metadata: pd.DataFrame, recipes: pd.DataFrame) -> MatchResult:
    """
    Left-join photo metadata with recipes on the 14 join attributes.

    Every photo row is kept through the join. Photos matching several recipe rows
    produce one matched row per recipe (no deduplication); they are also listed in
    ``MatchSummary.ambiguous``.

    Args:
        metadata: Photo metadata with ``SourceFile`` and ``FileName`` columns
        recipes: Recipe definitions with a ``filmsim`` column

    Returns:
        MatchResult with the matched rows (``SourceFile, FileName, filmsim``), the
        sorted unmatched file names (``FileName``) and the summary.

    Raises:
        InputFileError: A required identifying column is missing.
        JoinEngineError: pandas failed while joining.

    """
    _require_columns(metadata, METADATA_REQUIRED, "Metadata table")
    _require_columns(recipes, RECIPES_REQUIRED, "Recipes table")

    photos, missing_in_metadata = reconcile_schema(metadata, table_name="metadata")
    recipe_rows, missing_in_recipes = reconcile_schema(recipes, table_name="recipes")

    recipe_keys = recipe_rows[[*JOIN_ATTRIBUTES, RECIPE_COLUMN]]
    photos = reorder_columns(photos, JOIN_ATTRIBUTES)

    try:
        joined = photos.merge(
            recipe_keys,
            how="left",
            on=list(JOIN_ATTRIBUTES),
            suffixes=("_photo", ""),
        )
    except (KeyError, ValueError, TypeError) as exc:
        raise JoinEngineError(f"Joining metadata with recipes failed: {exc}") from exc

    labels = joined[RECIPE_COLUMN].fillna("").astype(str)
    sources = joined[SOURCE_COLUMN].fillna("").astype(str)
    matched = joined.loc[(labels != "") & (sources != ""), list(MATCHED_COLUMNS)]
    matched = matched.reset_index(drop=True)

    all_names = set(photos[FILE_NAME_COLUMN].fillna("").astype(str)) - {""}
    matched_names = set(matched[FILE_NAME_COLUMN].astype(str))
    unmatched = pd.DataFrame(
        {FILE_NAME_COLUMN: sorted(all_names - matched_names)},
        columns=list(UNMATCHED_COLUMNS),
    )

    ambiguous = _find_ambiguous(matched)
    for source, names in ambiguous.items():
        logger.warning("ambiguous_recipe_match", file=source, recipes=names)

    summary = MatchSummary(
        input_photos=len(photos),
        matched_rows=len(matched),
        matched_photos=int(matched[SOURCE_COLUMN].nunique()),
        unmatched_photos=len(unmatched),
        missing_in_metadata=missing_in_metadata,
        missing_in_recipes=missing_in_recipes,
        ambiguous=ambiguous,
    )
    return MatchResult(matched=matched, unmatched=unmatched, summary=summary)


def write_match_outputs(result: MatchResult, output_dir: Path) -> tuple[Path, Path | None]:
    """
    Write ``matched_recipes.csv`` and, when needed, ``unmatched_jpgs.csv``.

    The matched file is always written, with just its header when nothing matched.
    The unmatched file only exists when some photos found no recipe; a leftover one
    from an earlier run is removed otherwise.
    """
    matched_csv = write_csv(result.matched, output_dir / MATCHED_FILENAME)

    unmatched_target = output_dir / UNMATCHED_FILENAME
    if result.unmatched.empty:
        if unmatched_target.exists():
            logger.info("removing_stale_unmatched_list", file=str(unmatched_target))
            unmatched_target.unlink()
        return matched_csv, None
    return matched_csv, write_csv(result.unmatched, unmatched_target)


def _log_summary(report: IdentifyReport) -> None:
    summary = report.summary
    logger.info(
        "processing_summary",
        input_photos=summary.input_photos,
        matched_rows=summary.matched_rows,
        matched_photos=summary.matched_photos,
        unmatched_photos=summary.unmatched_photos,
    )
    if summary.no_matches:
        logger.warning(
            "no_matches_found",
            hint="Check column values or missing columns; values must match exactly",
        )
    if summary.more_matches_than_photos:
        logger.warning(
            "more_matches_than_photos",
            matched_rows=summary.matched_rows,
            input_photos=summary.input_photos,
            hint="Your recipe file probably includes duplicate entries",
        )
    logger.info("matched_list_saved", file=str(report.matched_csv))
    if report.unmatched_csv is not None:
        logger.info("unmatched_list_saved", file=str(report.unmatched_csv))


def identify_recipes(metadata_csv: Path, recipes_csv: Path, output_dir: Path) -> IdentifyReport:
    """
    Run the full identification: validate, load, match and write both outputs.

    All inputs and the output folder are validated before anything is written, so a
    failure leaves existing outputs untouched.

    Args:
        metadata_csv: CSV exported from the photos (``SourceFile``, ``FileName``, settings)
        recipes_csv: User-curated recipe table (``filmsim`` plus settings)
        output_dir: Existing, writable folder for ``matched_recipes.csv`` and
            ``unmatched_jpgs.csv``

    Returns:
        IdentifyReport with the summary and output paths.

    """
    logger.info("validating_inputs")
    metadata = read_table(metadata_csv, label="Metadata", required_columns=METADATA_REQUIRED)
    recipes = read_table(recipes_csv, label="Recipes", required_columns=RECIPES_REQUIRED)
    validate_output_dir(output_dir)
    large_files = [path for path in (metadata_csv, recipes_csv) if is_large_file(path)]

    if not find_missing_attributes(metadata) and not find_missing_attributes(recipes):
        logger.info("all_join_columns_present")

    result = match_recipes(metadata, recipes)
    matched_csv, unmatched_csv = write_match_outputs(result, output_dir)

    report = IdentifyReport(
        summary=result.summary,
        matched_csv=matched_csv,
        unmatched_csv=unmatched_csv,
        large_files=large_files,
    )
    _log_summary(report)
    return report
