import pytest

SHAPES_UNIT = """unit Shapes;

interface

uses
  SysUtils, Classes;

type
  // Base shape with a name.
  TShape = class
  private
    FName: string;
    FArea: Double;
    function GetName: string;
  public
    constructor Create(const AName: string);
    { Computes the area. }
    function Area: Double; virtual;
    procedure Describe(Verbose: Boolean);
    property Name: string read GetName;
  end;

  TCircle = class(TShape)
  private
    FRadius: Double;
  public
    function Area: Double; override;
  end;

function MakeCircle(R: Double): TCircle;

implementation

constructor TShape.Create(const AName: string);
begin
  FName := AName;
end;

function TShape.GetName: string;
begin
  Result := FName;
end;

function TShape.Area: Double;
begin
  Result := FArea;
end;

procedure TShape.Describe(Verbose: Boolean);
begin
  if Verbose and (FName <> '') then
    WriteLn(FName)
  else
    WriteLn('?');
end;

function TCircle.Area: Double;
begin
  Result := 3.14 * FRadius * FRadius;
end;

function MakeCircle(R: Double): TCircle;
begin
  Result := TCircle.Create('circle');
  Result.FRadius := R;
end;

end.
"""

HELPERS_UNIT = """unit Helpers;

interface

procedure Helper;
procedure Orphan;

implementation

procedure Helper;
begin
end;

procedure Orphan;
begin
end;

end.
"""

APP_PROGRAM = """program App;

uses
  Helpers;

begin
  Helper;
end.
"""

BROKEN_UNIT = """unit Broken;

interface

implementation

procedure Foo;
begin
  X := ;
end;

end.
"""


@pytest.fixture
def shapes_source() -> str:
    return SHAPES_UNIT


@pytest.fixture
def helpers_source() -> str:
    return HELPERS_UNIT


@pytest.fixture
def app_source() -> str:
    return APP_PROGRAM


@pytest.fixture
def broken_source() -> str:
    return BROKEN_UNIT
