# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Semantic model of analyzed Delphi units."""

from dataclasses import dataclass
from typing import Literal

from dsm.syntax import SyntaxNode

UnitKind = Literal["unit", "program", "library", "package"]
ClassKind = Literal["class", "object", "record", "helper", "interface"]
RoutineKind = Literal["procedure", "function", "constructor", "destructor", "operator"]
Visibility = Literal[
    "private",
    "strict private",
    "protected",
    "strict protected",
    "public",
    "published",
    "automated",
]

PUBLIC_VISIBILITIES: frozenset[str] = frozenset({"public", "published", "automated"})


@dataclass(frozen=True)
class Field:
    """Represent a class field.

    Attributes:
        name: Declared field name.
        type_name: Declared type text.
        visibility: Visibility section the field is declared in.
        line: Declaration line (1-based).
    """

    name: str
    type_name: str
    visibility: Visibility
    line: int


@dataclass(frozen=True)
class Property:
    """Represent a class property and its accessor names."""

    name: str
    visibility: Visibility
    read_accessor: str | None
    write_accessor: str | None
    documented: bool
    line: int


@dataclass(frozen=True)
class Function:
    """Represent a free routine or a method.

    Attributes:
        name: Simple routine name.
        qualified_name: Name as written in the implementation heading.
        class_name: Owning class name; ``None`` for free routines.
        kind: Routine keyword.
        parameter_count: Number of declared parameter names.
        statements: Top-level statement nodes of the routine body.
        documented: Whether a comment ends on the line above the declaration.
        visibility: Declared visibility.
        directives: Lower-cased routine directives (``virtual``, ``class`` ...).
        has_body: Whether an implementation with a body was found.
        references: Lower-cased identifiers used in the body, minus parameters
            and locals.
        line: Declaration line (1-based).
    """

    name: str
    qualified_name: str
    class_name: str | None
    kind: RoutineKind
    parameter_count: int
    statements: tuple[SyntaxNode, ...]
    documented: bool
    visibility: Visibility
    directives: frozenset[str]
    has_body: bool
    references: frozenset[str]
    line: int

    @property
    def is_method(self) -> bool:
        return self.class_name is not None


@dataclass(frozen=True)
class ClassDecl:
    """Represent a declared class-like type.

    Attributes:
        name: Type name; nested types are named ``Outer.Inner``.
        kind: Type category.
        visibility: ``public`` when declared in the interface section.
        parents: Declared ancestor and interface names, in order.
        methods: Methods in declaration order.
        fields: Fields in declaration order.
        properties: Properties in declaration order.
        documented: Whether a comment ends on the line above the declaration.
        line: Declaration line (1-based).
    """

    name: str
    kind: ClassKind
    visibility: Visibility
    parents: tuple[str, ...]
    methods: tuple[Function, ...]
    fields: tuple[Field, ...]
    properties: tuple[Property, ...]
    documented: bool
    line: int

    def accessor_names(self) -> frozenset[str]:
        """Return lower-cased names used as property read/write specifiers."""
        names: set[str] = set()
        for prop in self.properties:
            for accessor in (prop.read_accessor, prop.write_accessor):
                if accessor:
                    names.add(accessor.lower())
        return frozenset(names)


@dataclass(frozen=True)
class Unit:
    """Represent one analyzed source file.

    Attributes:
        key: Resource key of the source file.
        name: Declared unit/program name.
        kind: Goal kind.
        classes: Class-like types with behavior, in declaration order.
        interfaces: Interface types.
        functions: Free routines plus methods whose class could not be resolved.
        uses: Names from uses, requires and contains clauses.
        exports: Names listed in exports clauses.
        references: Lower-cased identifiers used outside routine bodies.
        is_test: Whether the file lives in a test directory.
    """

    key: str
    name: str
    kind: UnitKind
    classes: tuple[ClassDecl, ...]
    interfaces: tuple[ClassDecl, ...]
    functions: tuple[Function, ...]
    uses: tuple[str, ...]
    exports: tuple[str, ...]
    references: frozenset[str]
    is_test: bool = False

    def all_functions(self) -> list[Function]:
        """Return free routines followed by every class method."""
        functions = list(self.functions)
        for class_decl in self.classes:
            functions.extend(class_decl.methods)
        return functions
