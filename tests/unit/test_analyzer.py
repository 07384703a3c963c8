from pathlib import Path

import pytest

from dsm.analyzers import AnalysisAbortedError, DelphiAnalyzer
from dsm.layout import (
    ConfigurationError,
    DelphiProject,
    FailurePolicy,
    ProjectLayout,
    discover_project,
)
from dsm.measures import DuplicateMeasureError, InMemoryMeasureSink

FLAGS_UNIT = """unit Flags;

interface

implementation

{$I common.inc}

procedure Always;
begin
end;

{$IFDEF FEATURE}
procedure Optional;
begin
  if Ready then Go;
end;
{$ENDIF}

end.
"""


def _write_file(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _project_tree(root: Path, shapes: str, helpers: str, app: str) -> ProjectLayout:
    _write_file(root / "src" / "Shapes.pas", shapes)
    _write_file(root / "src" / "Helpers.pas", helpers)
    _write_file(root / "src" / "App.dpr", app)
    _write_file(root / "src" / "README.txt", "not a source file")
    return ProjectLayout(base_dir=root, source_dirs=(Path("src"),))


def test_ph3_layout_001_keys_directories_and_classification(tmp_path: Path) -> None:
    layout = ProjectLayout(
        base_dir=tmp_path,
        source_dirs=(Path("src"), Path(".")),
        test_dirs=(Path("tests"),),
        exclude_patterns=("src/generated/",),
    )

    assert layout.resource_key(tmp_path / "src" / "core" / "A.pas") == "src/core/A.pas"
    assert layout.directory_key(tmp_path / "src" / "core" / "A.pas") == "src/core"
    assert layout.directory_key(tmp_path / "Main.dpr") == "."
    assert layout.is_excluded(tmp_path / "src" / "generated" / "B.pas") is True
    assert layout.is_excluded(tmp_path / "src" / "B.pas") is False
    assert layout.is_test(tmp_path / "tests" / "TestA.pas") is True
    assert layout.is_test(tmp_path / "src" / "A.pas") is False


def test_ph3_layout_002_untracked_directory_has_no_key(tmp_path: Path) -> None:
    layout = ProjectLayout(base_dir=tmp_path, source_dirs=(Path("src"),))

    assert layout.directory_key(tmp_path / "vendor" / "Lib.pas") is None


def test_ph3_layout_003_discover_collects_sources_in_sorted_order(
    tmp_path: Path, shapes_source: str, helpers_source: str, app_source: str
) -> None:
    _project_tree(tmp_path, shapes_source, helpers_source, app_source)
    _write_file(tmp_path / "src" / "old" / "Legacy.pas", helpers_source)
    layout = ProjectLayout(
        base_dir=tmp_path, source_dirs=(Path("src"),), exclude_patterns=("old/",)
    )

    project = discover_project(layout, definitions=["debug"])

    assert project.name == tmp_path.name
    assert [layout.resource_key(path) for path in project.source_files] == [
        "src/App.dpr",
        "src/Helpers.pas",
        "src/Shapes.pas",
    ]
    assert project.preprocess_config().defines == frozenset({"DEBUG"})


def test_ph3_orch_001_measures_every_file_and_directory(
    tmp_path: Path, shapes_source: str, helpers_source: str, app_source: str
) -> None:
    layout = _project_tree(tmp_path, shapes_source, helpers_source, app_source)
    sink = InMemoryMeasureSink()

    summary = DelphiAnalyzer(layout).analyze([discover_project(layout)], sink)

    assert summary.analyzed_files == ("src/App.dpr", "src/Helpers.pas", "src/Shapes.pas")
    assert summary.errors == ()
    assert summary.directory_files == (("src", 3),)
    assert sink.get("src", "directories") == 1.0
    assert sink.get("src", "files") == 3.0
    shapes = sink.for_resource("src/Shapes.pas")
    assert shapes["complexity"] == 8.0
    assert shapes["functions"] == 6.0
    assert shapes["lcom4"] == 2.0
    assert shapes["public_api"] == 8.0
    assert shapes["public_undocumented_api"] == 6.0
    assert "public_documented_api" not in shapes
    helpers = sink.for_resource("src/Helpers.pas")
    assert helpers["unused_functions"] == 1.0
    assert helpers["unused_units"] == 0.0
    assert "lcom4" not in helpers
    helper_violations = [
        violation.message
        for violation in sink.violations
        if violation.resource_key == "src/Helpers.pas"
    ]
    assert helper_violations == ["Routine 'Orphan' is never used."]


def test_ph3_orch_002_parse_failure_is_skipped_and_later_files_continue(
    tmp_path: Path,
    shapes_source: str,
    helpers_source: str,
    app_source: str,
    broken_source: str,
) -> None:
    layout = _project_tree(tmp_path, shapes_source, helpers_source, app_source)
    _write_file(tmp_path / "src" / "Broken.pas", broken_source)
    sink = InMemoryMeasureSink()

    summary = DelphiAnalyzer(layout).analyze([discover_project(layout)], sink)

    assert [error.file_path for error in summary.errors] == ["src/Broken.pas"]
    assert "9:8" in summary.errors[0].message
    assert sink.has_resource("src/Broken.pas") is False
    assert sink.has_resource("src/Helpers.pas") is True
    assert sink.has_resource("src/Shapes.pas") is True
    assert sink.get("src", "files") == 4.0


def test_ph3_orch_003_fatal_parse_policy_aborts(tmp_path: Path, broken_source: str) -> None:
    _write_file(tmp_path / "src" / "Broken.pas", broken_source)
    layout = ProjectLayout(base_dir=tmp_path, source_dirs=(Path("src"),))
    analyzer = DelphiAnalyzer(layout, policy=FailurePolicy(parse_failure="fatal"))

    with pytest.raises(AnalysisAbortedError, match="src/Broken.pas"):
        analyzer.analyze([discover_project(layout)], InMemoryMeasureSink())


def test_ph3_orch_004_unresolved_directory_follows_policy(
    tmp_path: Path, helpers_source: str
) -> None:
    tracked = tmp_path / "src" / "Helpers.pas"
    untracked = tmp_path / "vendor" / "Vendor.pas"
    _write_file(tracked, helpers_source)
    _write_file(untracked, helpers_source.replace("unit Helpers;", "unit Vendor;"))
    layout = ProjectLayout(base_dir=tmp_path, source_dirs=(Path("src"),))
    project = DelphiProject(name="mixed", source_files=(untracked, tracked))

    with pytest.raises(ConfigurationError, match="vendor/Vendor.pas"):
        DelphiAnalyzer(layout).analyze([project], InMemoryMeasureSink())

    sink = InMemoryMeasureSink()
    summary = DelphiAnalyzer(
        layout, policy=FailurePolicy(unresolved_directory="skip")
    ).analyze([project], sink)

    assert [error.file_path for error in summary.errors] == ["vendor/Vendor.pas"]
    assert summary.analyzed_files == ("src/Helpers.pas",)
    assert sink.has_resource("vendor/Vendor.pas") is False


def test_ph3_orch_005_test_files_skip_dead_code(tmp_path: Path, helpers_source: str) -> None:
    _write_file(tmp_path / "src" / "Helpers.pas", helpers_source)
    _write_file(
        tmp_path / "tests" / "TestHelpers.pas",
        helpers_source.replace("unit Helpers;", "unit TestHelpers;"),
    )
    layout = ProjectLayout(
        base_dir=tmp_path, source_dirs=(Path("src"),), test_dirs=(Path("tests"),)
    )
    sink = InMemoryMeasureSink()

    DelphiAnalyzer(layout).analyze([discover_project(layout)], sink)

    test_measures = sink.for_resource("tests/TestHelpers.pas")
    assert "ncloc" in test_measures
    assert "unused_functions" not in test_measures
    assert sink.get("tests", "files") == 1.0
    assert sink.get("src", "files") == 1.0


def test_ph3_orch_006_file_shared_by_projects_is_measured_once(
    tmp_path: Path, helpers_source: str
) -> None:
    path = tmp_path / "src" / "Helpers.pas"
    _write_file(path, helpers_source)
    layout = ProjectLayout(base_dir=tmp_path, source_dirs=(Path("src"),))
    projects = [
        DelphiProject(name="first", source_files=(path,)),
        DelphiProject(name="second", source_files=(path,)),
    ]
    sink = InMemoryMeasureSink()

    summary = DelphiAnalyzer(layout).analyze(projects, sink)

    assert summary.analyzed_files == ("src/Helpers.pas",)
    assert summary.skipped_files == ("src/Helpers.pas",)
    assert sink.get("src", "files") == 1.0


def test_ph3_orch_007_sink_rejects_repeated_measure() -> None:
    sink = InMemoryMeasureSink()
    sink.save_measure("src/A.pas", "ncloc", 10.0)

    with pytest.raises(DuplicateMeasureError):
        sink.save_measure("src/A.pas", "ncloc", 11.0)

    assert sink.get("src/A.pas", "ncloc") == 10.0
    assert sink.resource_keys() == ["src/A.pas"]


def test_ph3_orch_008_project_defines_and_include_dirs_shape_the_source(tmp_path: Path) -> None:
    _write_file(tmp_path / "src" / "Flags.pas", FLAGS_UNIT)
    _write_file(tmp_path / "inc" / "common.inc", "const Ready = True;\n")
    layout = ProjectLayout(base_dir=tmp_path, source_dirs=(Path("src"),))

    plain = InMemoryMeasureSink()
    DelphiAnalyzer(layout).analyze(
        [discover_project(layout, include_dirs=[tmp_path / "inc"])], plain
    )
    featured = InMemoryMeasureSink()
    summary = DelphiAnalyzer(layout).analyze(
        [discover_project(layout, include_dirs=[tmp_path / "inc"], definitions=["FEATURE"])],
        featured,
    )

    assert summary.errors == ()
    assert plain.get("src/Flags.pas", "functions") == 1.0
    assert plain.get("src/Flags.pas", "complexity") == 1.0
    assert featured.get("src/Flags.pas", "functions") == 2.0
    assert featured.get("src/Flags.pas", "complexity") == 3.0
