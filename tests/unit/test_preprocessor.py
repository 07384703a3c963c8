import logging
from pathlib import Path

from dsm.preprocessor import PreprocessConfig, preprocess, read_source


def _write_file(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def test_ph1_pre_001_undefined_symbol_excludes_block_and_keeps_line_numbers() -> None:
    text = "unit A;\n{$IFDEF DEBUG}\nX := 1;\n{$ENDIF}\nY := 2;\n"

    result = preprocess(text, PreprocessConfig())

    assert "X := 1" not in result
    assert result.splitlines()[4] == "Y := 2;"
    assert result.count("\n") == text.count("\n")


def test_ph1_pre_002_defined_symbol_keeps_block_case_insensitively() -> None:
    text = "{$ifdef Debug}\nX := 1;\n{$else}\nX := 2;\n{$endif}\n"
    config = PreprocessConfig.for_project(include_dirs=[], defines=["DEBUG"])

    result = preprocess(text, config)

    assert "X := 1;" in result
    assert "X := 2;" not in result
    assert result.splitlines()[1] == "X := 1;"


def test_ph1_pre_003_ifndef_and_else_branches() -> None:
    text = "{$IFNDEF RELEASE}\nA;\n{$ELSE}\nB;\n{$ENDIF}\n"

    assert "A;" in preprocess(text, PreprocessConfig())
    released = preprocess(text, PreprocessConfig.for_project([], ["RELEASE"]))
    assert "A;" not in released
    assert "B;" in released


def test_ph1_pre_004_nested_conditionals_honor_enclosing_exclusion() -> None:
    text = (
        "{$IFDEF OUTER}\n"
        "{$IFNDEF INNER}\n"
        "Hidden;\n"
        "{$ELSE}\n"
        "AlsoHidden;\n"
        "{$ENDIF}\n"
        "{$ELSE}\n"
        "Shown;\n"
        "{$ENDIF}\n"
    )

    result = preprocess(text, PreprocessConfig())

    assert "Hidden;" not in result
    assert "AlsoHidden;" not in result
    assert "Shown;" in result


def test_ph1_pre_005_if_defined_expressions_and_elseif() -> None:
    text = (
        "{$IF Defined(A) and not Defined(B)}\n"
        "First;\n"
        "{$ELSEIF Defined(B) or Defined(C)}\n"
        "Second;\n"
        "{$ELSE}\n"
        "Third;\n"
        "{$IFEND}\n"
    )

    only_a = preprocess(text, PreprocessConfig.for_project([], ["A"]))
    both = preprocess(text, PreprocessConfig.for_project([], ["A", "B"]))
    none = preprocess(text, PreprocessConfig())

    assert "First;" in only_a and "Second;" not in only_a
    assert "Second;" in both and "First;" not in both
    assert "Third;" in none and "First;" not in none


def test_ph1_pre_006_unevaluable_condition_is_false() -> None:
    text = "{$IF CompilerVersion >= 20}\nModern;\n{$ELSE}\nLegacy;\n{$ENDIF}\n{$IFOPT R+}\nChecked;\n{$ENDIF}\n"

    result = preprocess(text, PreprocessConfig())

    assert "Modern;" not in result
    assert "Legacy;" in result
    assert "Checked;" not in result


def test_ph1_pre_007_define_and_undef_only_apply_in_active_regions() -> None:
    text = (
        "{$DEFINE LOCAL}\n"
        "{$IFDEF NEVER}{$DEFINE GHOST}{$ENDIF}\n"
        "{$IFDEF LOCAL}\nLocalOn;\n{$ENDIF}\n"
        "{$IFDEF GHOST}\nGhostOn;\n{$ENDIF}\n"
        "{$UNDEF LOCAL}\n"
        "{$IFDEF LOCAL}\nStillOn;\n{$ENDIF}\n"
    )

    result = preprocess(text, PreprocessConfig())

    assert "LocalOn;" in result
    assert "GhostOn;" not in result
    assert "StillOn;" not in result


def test_ph1_pre_008_unterminated_block_stays_excluded_to_end_of_file() -> None:
    text = "Before;\n{$IFDEF MISSING}\nAfter;\nMore;\n"

    result = preprocess(text, PreprocessConfig())

    assert "Before;" in result
    assert "After;" not in result
    assert "More;" not in result


def test_ph1_pre_009_directives_inside_strings_and_comments_are_ignored() -> None:
    text = "S := '{$IFDEF X}';\n// {$IFDEF X}\n(* {$ENDIF} *)\nT := 1;\n"

    result = preprocess(text, PreprocessConfig())

    assert result == text


def test_ph1_pre_010_include_is_replaced_in_place(tmp_path: Path) -> None:
    _write_file(tmp_path / "src" / "Main.pas", "")
    _write_file(tmp_path / "src" / "Consts.inc", "const Answer = 42;\n")
    text = "unit Main;\n{$I Consts.inc}\nimplementation\n"

    result = preprocess(text, PreprocessConfig(), source_path=tmp_path / "src" / "Main.pas")

    assert result == "unit Main;\nconst Answer = 42;\n\nimplementation\n"


def test_ph1_pre_011_include_dirs_are_searched_case_insensitively(tmp_path: Path) -> None:
    _write_file(tmp_path / "inc" / "SHARED.INC", "{$DEFINE FROM_INCLUDE}\n")
    config = PreprocessConfig.for_project(include_dirs=[tmp_path / "inc"], defines=[])
    text = "{$INCLUDE 'shared.inc'}\n{$IFDEF FROM_INCLUDE}\nSeen;\n{$ENDIF}\n"

    result = preprocess(text, config, source_path=tmp_path / "src" / "Unit1.pas")

    assert "Seen;" in result
    assert "{$" not in result


def test_ph1_pre_012_io_checking_switch_survives(tmp_path: Path) -> None:
    text = "{$I+}\nReset(F);\n{$I-}\n"

    result = preprocess(text, PreprocessConfig(), source_path=tmp_path / "A.pas")

    assert result == text


def test_ph1_pre_013_unresolved_include_is_dropped_with_warning(
    tmp_path: Path, caplog
) -> None:
    text = "A;\n{$I missing.inc}\nB;\n"

    with caplog.at_level(logging.WARNING):
        result = preprocess(text, PreprocessConfig(), source_path=tmp_path / "A.pas")

    assert result == "A;\n\nB;\n"
    assert "missing.inc" in caplog.text


def test_ph1_pre_014_circular_include_is_dropped(tmp_path: Path, caplog) -> None:
    _write_file(tmp_path / "a.inc", "FromA;\n{$I b.inc}\n")
    _write_file(tmp_path / "b.inc", "FromB;\n{$I a.inc}\n")
    text = "{$I a.inc}\nDone;\n"

    with caplog.at_level(logging.WARNING):
        result = preprocess(text, PreprocessConfig(), source_path=tmp_path / "Main.pas")

    assert result.count("FromA;") == 1
    assert result.count("FromB;") == 1
    assert "Done;" in result
    assert "circular" in caplog.text.lower()


def test_ph1_pre_015_preprocess_is_idempotent(tmp_path: Path) -> None:
    _write_file(tmp_path / "defs.inc", "{$DEFINE FEATURE}\nconst Flag = True;\n")
    text = (
        "unit Main;\n"
        "{$I defs.inc}\n"
        "{$IFDEF FEATURE}\nFeature;\n{$ELSE}\nNoFeature;\n{$ENDIF}\n"
        "{$IFDEF OTHER}\nOther;\n{$ENDIF}\n"
        "{$R *.res}\n{$I+}\n"
    )
    config = PreprocessConfig()
    source_path = tmp_path / "Main.pas"

    once = preprocess(text, config, source_path=source_path)
    twice = preprocess(once, config, source_path=source_path)

    assert once == twice
    assert "{$R *.res}" in once
    assert "{$IFDEF" not in once


def test_ph1_pre_016_read_source_handles_bom_and_cp1252(tmp_path: Path) -> None:
    utf8_path = tmp_path / "utf8.pas"
    utf8_path.write_bytes(b"\xef\xbb\xbf" + "unit Café;\r\n".encode("utf-8"))
    legacy_path = tmp_path / "legacy.pas"
    legacy_path.write_bytes("unit Café;\r\n".encode("cp1252"))

    assert read_source(utf8_path) == "unit Café;\n"
    assert read_source(legacy_path) == "unit Café;\n"
