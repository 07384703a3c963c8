from pathlib import Path

import pytest

from dsm.analyzer import SourceResource
from dsm.cache import AnalysisCache, CacheEntry
from dsm.measures import InMemoryMeasureSink
from dsm.metrics import (
    CohesionCalculator,
    ComplexityCalculator,
    DeadCodeCalculator,
    SizeCalculator,
    default_calculators,
)
from dsm.metrics.cohesion import lcom4
from dsm.metrics.complexity import function_complexity, inheritance_depth
from dsm.metrics.dead_code import UNUSED_FUNCTION_RULE, UNUSED_UNIT_RULE
from dsm.model import ClassDecl, Function
from dsm.parser import SyntaxTreeBuilder
from dsm.syntax import SyntaxTree


def _resource(key: str = "src/Shapes.pas", is_test: bool = False) -> SourceResource:
    return SourceResource(key=key, path=Path(key), directory_key="src", is_test=is_test)


def _entries(*sources: tuple[str, str]) -> tuple[AnalysisCache, list[CacheEntry]]:
    cache = AnalysisCache()
    entries = []
    for key, source in sources:
        tree = SyntaxTreeBuilder().parse(source, key)
        assert isinstance(tree, SyntaxTree), tree
        entries.append(cache.get_or_build(key, tree))
    return cache, entries


def _run(calculator, entry: CacheEntry, cache: AnalysisCache, resource: SourceResource) -> None:
    calculator.analyze(resource, entry.tree, entry.classes, entry.functions, cache.units())


def _class(source: str) -> ClassDecl:
    _, (entry,) = _entries(("src/Sample.pas", source))
    return entry.classes[0]


def _function(body: str) -> Function:
    source = f"unit Sample;\ninterface\nimplementation\nprocedure Run;\nbegin\n{body}\nend;\nend.\n"
    _, (entry,) = _entries(("src/Sample.pas", source))
    return entry.functions[0]


def test_ph2_size_001_counts_lines_comments_and_statements(shapes_source: str) -> None:
    cache, (entry,) = _entries(("src/Shapes.pas", shapes_source))
    calculator = SizeCalculator()

    _run(calculator, entry, cache, _resource())

    assert calculator.value_of("lines") == 68
    assert calculator.value_of("ncloc") == 53
    assert calculator.value_of("comment_lines") == 2
    assert calculator.value_of("comment_blank_lines") == 0
    assert calculator.value_of("statements") == 9
    assert calculator.value_of("public_documented_api") == 2


def test_ph2_size_002_blank_comment_lines_are_separated() -> None:
    source = "unit A;\n{\n  Header text\n\n}\n//\ninterface\nimplementation\nend.\n"
    cache, (entry,) = _entries(("src/A.pas", source))
    calculator = SizeCalculator()

    _run(calculator, entry, cache, _resource("src/A.pas"))

    assert calculator.value_of("comment_lines") == 1
    assert calculator.value_of("comment_blank_lines") == 4
    assert calculator.value_of("ncloc") == 4


def test_ph2_cx_001_complexity_counts_decisions_and_boolean_operators() -> None:
    function = _function(
        "  if (A > 0) and (B > 0) or C then\n"
        "    X := 1;\n"
        "  while A > 0 do\n"
        "    Dec(A);\n"
        "  case A of\n"
        "    1: X := 1;\n"
        "    2: X := 2;\n"
        "  end;\n"
        "  for I := 1 to 3 do\n"
        "    if B then Inc(X);\n"
        "  X := Ord(A and B);\n"
    )

    # 1 + if(1) + and/or(2) + while(1) + branches(2) + for(1) + nested if(1)
    assert function_complexity(function) == 9


def test_ph2_cx_002_straight_line_routine_has_complexity_one() -> None:
    assert function_complexity(_function("  X := 1;\n  Y := X;\n")) == 1
    assert function_complexity(_function("")) == 1


def test_ph2_cx_003_file_level_complexity_metrics(shapes_source: str) -> None:
    cache, (entry,) = _entries(("src/Shapes.pas", shapes_source))
    calculator = ComplexityCalculator()

    _run(calculator, entry, cache, _resource())

    assert calculator.value_of("complexity") == 8
    assert calculator.value_of("functions") == 6
    assert calculator.value_of("function_complexity") == pytest.approx(8 / 6)
    assert calculator.value_of("classes") == 2
    assert calculator.value_of("class_complexity") == pytest.approx(3.5)
    assert calculator.value_of("accessors") == 1
    assert calculator.value_of("public_api") == 8
    assert calculator.value_of("rfc") == 5
    assert calculator.value_of("dit") == 1
    assert calculator.value_of("noc") == 1


def test_ph2_cx_004_inheritance_depth_follows_analyzed_parents() -> None:
    source = """unit Tree;
interface
type
  TBase = class(TObject)
  end;
  TMiddle = class(TBase)
  end;
  TLeaf = class(TMiddle)
  end;
  TLoopA = class(TLoopB)
  end;
  TLoopB = class(TLoopA)
  end;
implementation
end.
"""
    _, (entry,) = _entries(("src/Tree.pas", source))
    by_name = {class_decl.name.lower(): class_decl for class_decl in entry.classes}

    assert inheritance_depth(by_name["tbase"], by_name) == 1
    assert inheritance_depth(by_name["tleaf"], by_name) == 3
    assert inheritance_depth(by_name["tloopa"], by_name) == 2


def test_ph2_cx_005_value_of_rejects_unknown_metric() -> None:
    with pytest.raises(KeyError):
        ComplexityCalculator().value_of("lcom4")


def test_ph2_lcom_001_connected_methods_form_one_component() -> None:
    class_decl = _class(
        """unit Counter;
interface
type
  TCounter = class
  private
    FCount: Integer;
  public
    procedure Increment;
    procedure Reset;
    function Next: Integer;
  end;
implementation
procedure TCounter.Increment;
begin
  FCount := FCount + 1;
end;
procedure TCounter.Reset;
begin
  FCount := 0;
end;
function TCounter.Next: Integer;
begin
  Increment;
  Result := FCount;
end;
end.
"""
    )

    assert lcom4(class_decl) == 1


def test_ph2_lcom_002_disjoint_field_groups_form_two_components(shapes_source: str) -> None:
    _, (entry,) = _entries(("src/Shapes.pas", shapes_source))
    shape, circle = entry.classes

    assert lcom4(shape) == 2
    assert lcom4(circle) == 1


def test_ph2_lcom_003_property_references_resolve_to_accessors() -> None:
    class_decl = _class(
        """unit Props;
interface
type
  TBox = class
  private
    FWidth: Integer;
    FHeight: Integer;
    function GetWidth: Integer;
  public
    procedure Grow;
    procedure Shrink;
    property Width: Integer read GetWidth;
  end;
implementation
function TBox.GetWidth: Integer;
begin
  Result := FWidth;
end;
procedure TBox.Grow;
begin
  FHeight := Width + 1;
end;
procedure TBox.Shrink;
begin
  FHeight := 0;
end;
end.
"""
    )

    assert lcom4(class_decl) == 1


def test_ph2_lcom_004_class_without_methods_has_lcom4_one() -> None:
    class_decl = _class(
        "unit Empty;\ninterface\ntype\n  TData = class\n    FValue: Integer;\n  end;\nimplementation\nend.\n"
    )

    assert lcom4(class_decl) == 1


def test_ph2_lcom_005_file_without_classes_emits_nothing(helpers_source: str) -> None:
    cache, (entry,) = _entries(("src/Helpers.pas", helpers_source))
    calculator = CohesionCalculator()
    sink = InMemoryMeasureSink()
    resource = _resource("src/Helpers.pas")

    _run(calculator, entry, cache, resource)
    calculator.emit(resource, sink)

    assert sink.get("src/Helpers.pas", "lcom4") is None
    assert calculator.value_of("lcom4") == 0.0


def test_ph2_dead_001_flags_unreferenced_routines_and_units(shapes_source: str) -> None:
    cache, (entry,) = _entries(("src/Shapes.pas", shapes_source))
    calculator = DeadCodeCalculator()
    sink = InMemoryMeasureSink()
    resource = _resource()

    _run(calculator, entry, cache, resource)
    calculator.emit(resource, sink)

    assert calculator.value_of("unused_functions") == 2
    assert calculator.value_of("unused_units") == 1
    flagged = sorted(
        violation.message for violation in sink.violations if violation.rule_key == UNUSED_FUNCTION_RULE
    )
    assert flagged == [
        "Routine 'MakeCircle' is never used.",
        "Routine 'TShape.Describe' is never used.",
    ]
    assert [violation.line for violation in sink.violations if violation.rule_key == UNUSED_UNIT_RULE] == [1]


def test_ph2_dead_002_cross_unit_references_count_as_usage(
    helpers_source: str, app_source: str
) -> None:
    cache, (helpers, app) = _entries(("src/Helpers.pas", helpers_source), ("App.dpr", app_source))
    calculator = DeadCodeCalculator()

    _run(calculator, helpers, cache, _resource("src/Helpers.pas"))

    assert calculator.value_of("unused_functions") == 1
    assert [violation.message for violation in calculator.violations] == [
        "Routine 'Orphan' is never used."
    ]
    assert calculator.value_of("unused_units") == 0

    _run(calculator, app, cache, _resource("App.dpr"))

    assert calculator.value_of("unused_functions") == 0
    assert calculator.value_of("unused_units") == 0


def test_ph2_dead_003_skips_test_resources() -> None:
    assert DeadCodeCalculator().applies_to(_resource(is_test=True)) is False
    assert DeadCodeCalculator().applies_to(_resource()) is True


def test_ph2_metrics_001_default_calculators_cover_every_metric() -> None:
    calculators = default_calculators()

    names = set().union(*(calculator.metrics for calculator in calculators))

    assert [type(calculator) for calculator in calculators] == [
        SizeCalculator,
        ComplexityCalculator,
        CohesionCalculator,
        DeadCodeCalculator,
    ]
    assert {"ncloc", "complexity", "lcom4", "unused_functions", "public_api"} <= names


def test_ph2_dead_004_entry_points_are_not_flagged() -> None:
    library_source = """library Lib;

procedure Exported; stdcall;
begin
end;

exports
  Exported;

begin
end.
"""
    unit_source = """unit Forms;

interface

type
  IFoo = interface
    procedure Bar;
  end;

  TVec = record
    X: Integer;
    class operator Add(const A, B: TVec): TVec;
  end;

  TFoo = class(TInterfacedObject, IFoo)
  published
    procedure Click(Sender: TObject);
  public
    procedure Bar;
    procedure WMPaint(var Msg: TMessage); message WM_PAINT;
    procedure Refresh; dynamic;
    procedure Forgotten;
  end;

implementation

class operator TVec.Add(const A, B: TVec): TVec;
begin
  Result.X := A.X + B.X;
end;

procedure TFoo.Click(Sender: TObject);
begin
end;

procedure TFoo.Bar;
begin
end;

procedure TFoo.WMPaint(var Msg: TMessage);
begin
end;

procedure TFoo.Refresh;
begin
end;

procedure TFoo.Forgotten;
begin
end;

end.
"""
    cache, (library, unit) = _entries(("Lib.dpr", library_source), ("src/Forms.pas", unit_source))
    calculator = DeadCodeCalculator()

    _run(calculator, library, cache, _resource("Lib.dpr"))

    assert calculator.value_of("unused_functions") == 0
    assert calculator.violations == []

    _run(calculator, unit, cache, _resource("src/Forms.pas"))

    flagged = [
        violation.message
        for violation in calculator.violations
        if violation.rule_key == UNUSED_FUNCTION_RULE
    ]
    assert flagged == ["Routine 'TFoo.Forgotten' is never used."]
    assert calculator.value_of("unused_functions") == 1
