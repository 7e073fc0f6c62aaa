"""Tests for the command-line entry points."""

from pathlib import Path

import pytest

import recipe_identifier.main as m
from recipe_identifier.exif import KeywordWriteReport


QUIET = {"file_log_level": "OFF", "console_log_level": "OFF"}

SETTINGS = (
    "FilmMode,DevelopmentDynamicRange,ColorChromeEffect,ColorChromeFXBlue,GrainEffectSize,"
    "GrainEffectRoughness,ColorTemperature,WhiteBalanceFineTune,HighlightTone,ShadowTone,"
    "Saturation,Sharpness,NoiseReduction,Clarity"
)
MCCURRY = "Classic Chrome,200,Strong,Off,Small,Weak,Auto,\"Red +2, Blue -4\",+1,-1,0,+1,-4,0"
VELVIA = "Velvia,100,Off,Off,Off,Off,Auto,\"Red 0, Blue 0\",0,0,+2,0,0,0"


@pytest.fixture
def inputs(tmp_path: Path) -> tuple[Path, Path]:
    metadata = tmp_path / "pics_metadata.csv"
    metadata.write_text(
        f"SourceFile,FileName,{SETTINGS}\n"
        f"/p/a.jpg,a.jpg,{MCCURRY}\n"
        f"/p/b.jpg,b.jpg,{VELVIA}\n",
        encoding="utf-8",
    )
    recipes = tmp_path / "recipes.csv"
    recipes.write_text(f"filmsim,{SETTINGS}\nMcCurry,{MCCURRY}\n", encoding="utf-8")
    return metadata, recipes


def test_setup_logging_off_creates_no_log_folder(tmp_path: Path) -> None:
    """Disabling the file sink never touches the log folder."""
    m.setup_logging("OFF", "OFF", tmp_path / "logs")

    assert not (tmp_path / "logs").exists()


def test_setup_logging_writes_log_file(tmp_path: Path) -> None:
    """The file sink creates a timestamped log in the log folder."""
    m.setup_logging("DEBUG", "OFF", tmp_path / "logs")
    m.logger.info("hello")
    m.logger.remove()

    logs = list((tmp_path / "logs").glob("*-recipe_identifier.log"))
    assert len(logs) == 1
    assert "hello" in logs[0].read_text(encoding="utf-8")


def test_identify_writes_outputs(tmp_path: Path, inputs: tuple[Path, Path]) -> None:
    """A successful run writes the matched and unmatched lists."""
    metadata, recipes = inputs
    out = tmp_path / "out"
    out.mkdir()

    m.identify(metadata, recipes, out, **QUIET)

    assert (out / "matched_recipes.csv").read_text(encoding="utf-8") == (
        "SourceFile,FileName,filmsim\n/p/a.jpg,a.jpg,McCurry\n"
    )
    assert (out / "unmatched_jpgs.csv").read_text(encoding="utf-8") == "FileName\nb.jpg\n"


def test_identify_accepts_quoted_drag_and_drop_paths(
    tmp_path: Path,
    inputs: tuple[Path, Path],
) -> None:
    """Paths wrapped in quotes by a file manager are unwrapped."""
    metadata, recipes = inputs

    m.identify(Path(f"'{metadata}'"), Path(f'"{recipes}"'), Path(f"'{tmp_path}'"), **QUIET)

    assert (tmp_path / "matched_recipes.csv").exists()


def test_identify_exits_on_missing_recipes(tmp_path: Path, inputs: tuple[Path, Path]) -> None:
    """A missing recipes file exits with status 1 and writes nothing."""
    metadata, _ = inputs

    with pytest.raises(SystemExit) as excinfo:
        m.identify(metadata, tmp_path / "nope.csv", tmp_path, **QUIET)

    assert excinfo.value.code == 1
    assert not (tmp_path / "matched_recipes.csv").exists()


def test_export_exits_when_input_is_not_a_folder(tmp_path: Path) -> None:
    """Export errors are reported as exit status 1."""
    with pytest.raises(SystemExit) as excinfo:
        m.export(tmp_path / "missing", tmp_path, **QUIET)

    assert excinfo.value.code == 1


def test_add_keywords_exits_when_files_fail(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Any file ExifTool could not update makes the command fail."""
    calls: list[tuple[Path, bool, bool]] = []

    def fake_add(matched_csv: Path, *, backup: bool, mirror_subject: bool) -> KeywordWriteReport:
        calls.append((matched_csv, backup, mirror_subject))
        return KeywordWriteReport(updated=1, failed=["/p/b.jpg"])

    monkeypatch.setattr(m, "add_recipe_keywords", fake_add)

    with pytest.raises(SystemExit) as excinfo:
        m.add_keywords(tmp_path / "matched_recipes.csv", backup=True, **QUIET)

    assert excinfo.value.code == 1
    assert calls == [(tmp_path / "matched_recipes.csv", True, False)]


def test_add_keywords_succeeds_without_failures(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A clean keyword pass returns normally."""
    monkeypatch.setattr(
        m,
        "add_recipe_keywords",
        lambda *_args, **_kwargs: KeywordWriteReport(updated=2),
    )

    m.add_keywords(tmp_path / "matched_recipes.csv", **QUIET)


def test_add_film_mode_passes_options(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Folder, extensions and recursion flags reach the keyword writer."""
    seen: dict[str, object] = {}

    def fake_film_mode(root: Path, **kwargs: object) -> KeywordWriteReport:
        seen.update(root=root, **kwargs)
        return KeywordWriteReport(updated=1, skipped=1)

    monkeypatch.setattr(m, "add_film_mode_keywords", fake_film_mode)

    m.add_film_mode(tmp_path, image_extensions="jpg", recursive=False, **QUIET)

    assert seen == {
        "root": tmp_path,
        "image_extensions": "jpg",
        "recursive": False,
        "backup": False,
    }
