# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Semantic model building from Delphi syntax trees."""

import logging
from dataclasses import dataclass, field
from typing import cast

from dsm.model import (
    ClassDecl,
    ClassKind,
    Field,
    Function,
    Property,
    RoutineKind,
    Unit,
    UnitKind,
    Visibility,
)
from dsm.syntax import SyntaxNode, SyntaxTree

logger = logging.getLogger(__name__)

_CLASS_KINDS: frozenset[str] = frozenset({"class", "object", "record", "helper", "interface"})


@dataclass
class _Slot:
    """Pair a routine declaration with its implementation.

    Attributes:
        visibility: Visibility of the declaration, or ``private`` when the
            routine is only implemented.
        documented: Whether a comment ends on the line above the heading.
        class_name: Owning class, ``None`` for free routines.
        decl: Declaration heading, if any.
        impl: Implementation node, if any.
    """

    visibility: Visibility
    documented: bool
    class_name: str | None
    decl: SyntaxNode | None = None
    impl: SyntaxNode | None = None

    @property
    def heading(self) -> SyntaxNode:
        """Return the declaration heading, falling back to the implementation."""
        return self.decl if self.decl is not None else cast(SyntaxNode, self.impl)


@dataclass
class _ClassDraft:
    """Collect the members of one class-like type before freezing it."""

    name: str
    kind: ClassKind
    visibility: Visibility
    parents: tuple[str, ...]
    documented: bool
    line: int
    methods: list[_Slot] = field(default_factory=list)
    fields: list[Field] = field(default_factory=list)
    properties: list[Property] = field(default_factory=list)


class ModelBuilder:
    """Build semantic units from syntax trees."""

    def build(self, tree: SyntaxTree, file_key: str, is_test: bool = False) -> Unit:
        """Build the semantic model of one parsed file.

        Args:
            tree: Parsed syntax tree.
            file_key: Resource key identifying the file.
            is_test: Whether the file belongs to a test directory.

        Returns:
            The immutable unit model.
        """
        doc_lines = frozenset(
            comment.end_line for comment in tree.comments if not comment.is_directive
        )
        unit = _UnitBuilder(doc_lines).build(tree.root, file_key, is_test)
        logger.debug(
            f"Built unit model (file_key={file_key} classes={len(unit.classes)} "
            f"functions={len(unit.functions)})"
        )
        return unit


class _UnitBuilder:
    """Build one ``Unit``; a fresh builder is used per file."""

    def __init__(self, doc_lines: frozenset[int]) -> None:
        self._doc_lines = doc_lines
        self._drafts: list[_ClassDraft] = []
        self._drafts_by_name: dict[str, _ClassDraft] = {}
        self._free: list[_Slot] = []
        self._implementations: list[SyntaxNode] = []

    def _documented(self, line: int) -> bool:
        """Return whether a comment ends on the line before ``line``."""
        return line - 1 in self._doc_lines

    def build(self, root: SyntaxNode, key: str, is_test: bool) -> Unit:
        """Collect types and routines, attach implementations and freeze the unit."""
        if root.kind == "unit":
            interface = root.child("interface_section")
            implementation = root.child("implementation_section")
            sections = [
                (node, public)
                for node, public in ((interface, True), (implementation, False))
                if node is not None
            ]
        else:
            sections = [(root, False)]

        for section, public in sections:
            for child in section.children:
                if child.kind == "type_section":
                    self._collect_types(child, public, prefix="")
                elif child.kind == "routine_decl":
                    self._free.append(
                        _Slot(
                            visibility="public" if public else "private",
                            documented=self._documented(child.line),
                            class_name=None,
                            decl=child,
                        )
                    )
                elif child.kind == "routine":
                    self._implementations.append(child)

        for routine in self._implementations:
            self._attach(routine)

        classes: list[ClassDecl] = []
        interfaces: list[ClassDecl] = []
        for draft in self._drafts:
            class_decl = ClassDecl(
                name=draft.name,
                kind=draft.kind,
                visibility=draft.visibility,
                parents=draft.parents,
                methods=tuple(_build_function(slot) for slot in draft.methods),
                fields=tuple(draft.fields),
                properties=tuple(draft.properties),
                documented=draft.documented,
                line=draft.line,
            )
            if draft.kind == "interface":
                interfaces.append(class_decl)
            elif draft.kind == "record" and not draft.methods:
                continue
            else:
                classes.append(class_decl)

        return Unit(
            key=key,
            name=root.text,
            kind=cast(UnitKind, root.kind),
            classes=tuple(classes),
            interfaces=tuple(interfaces),
            functions=tuple(_build_function(slot) for slot in self._free),
            uses=tuple(
                ref.text for uses in root.find_all("uses") for ref in uses.children_of("unit_ref")
            ),
            exports=tuple(
                ident.text for node in root.find_all("exports") for ident in node.children_of("ident")
            ),
            references=_unit_references(root),
            is_test=is_test,
        )

    def _collect_types(self, section: SyntaxNode, public: bool, prefix: str) -> None:
        """Create drafts for class-like types, including nested ones."""
        for decl in section.children_of("type_decl"):
            definition = decl.child("class_type")
            if definition is None:
                continue
            name = f"{prefix}{decl.text}"
            kind = definition.text if definition.text in _CLASS_KINDS else "class"
            draft = _ClassDraft(
                name=name,
                kind=cast(ClassKind, kind),
                visibility="public" if public else "private",
                parents=tuple(
                    ref.text
                    for heritage in definition.children_of("heritage")
                    for ref in heritage.children_of("type_ref")
                ),
                documented=self._documented(decl.line),
                line=decl.line,
            )
            self._drafts.append(draft)
            self._drafts_by_name.setdefault(name.lower(), draft)
            for visibility_section in definition.children_of("visibility_section"):
                visibility = cast(Visibility, visibility_section.text)
                for member in visibility_section.children:
                    self._collect_member(draft, member, visibility, public)

    def _collect_member(
        self, draft: _ClassDraft, member: SyntaxNode, visibility: Visibility, public: bool
    ) -> None:
        """Record one field, method declaration, property or nested type."""
        if member.kind == "field":
            type_ref = member.child("type_ref")
            draft.fields.append(
                Field(
                    name=member.text,
                    type_name=type_ref.text if type_ref else "",
                    visibility=visibility,
                    line=member.line,
                )
            )
        elif member.kind == "method_decl":
            draft.methods.append(
                _Slot(
                    visibility=visibility,
                    documented=self._documented(member.line),
                    class_name=draft.name,
                    decl=member,
                )
            )
        elif member.kind == "property":
            read = member.child("read_accessor")
            write = member.child("write_accessor")
            draft.properties.append(
                Property(
                    name=member.text,
                    visibility=visibility,
                    read_accessor=read.text if read else None,
                    write_accessor=write.text if write else None,
                    documented=self._documented(member.line),
                    line=member.line,
                )
            )
        elif member.kind == "type_section":
            self._collect_types(member, public, prefix=f"{draft.name}.")

    def _attach(self, routine: SyntaxNode) -> None:
        """Attach an implementation to its declaration.

        A qualified implementation is matched against the owning class; an
        unknown owner leaves the routine free with ``class_name`` set. An
        implementation without a declaration becomes a private routine.
        """
        qualified = routine.text
        class_name, _, name = qualified.rpartition(".")
        count = _parameter_count(routine)
        if not class_name:
            slot = _match(self._free, name, count, owner=None)
            if slot is not None:
                slot.impl = routine
                return
            self._free.append(
                _Slot(
                    visibility="private",
                    documented=self._documented(routine.line),
                    class_name=None,
                    impl=routine,
                )
            )
            return

        draft = self._drafts_by_name.get(class_name.lower())
        if draft is None:
            logger.debug(f"Unresolved method owner (routine={qualified})")
            self._free.append(
                _Slot(
                    visibility="private",
                    documented=self._documented(routine.line),
                    class_name=class_name,
                    impl=routine,
                )
            )
            return
        slot = _match(draft.methods, name, count, owner=draft.name)
        if slot is not None:
            slot.impl = routine
            return
        draft.methods.append(
            _Slot(
                visibility="private",
                documented=self._documented(routine.line),
                class_name=draft.name,
                impl=routine,
            )
        )


def _match(slots: list[_Slot], name: str, count: int, owner: str | None) -> _Slot | None:
    """Find the declaration slot an implementation belongs to.

    A slot whose parameter count matches wins; otherwise the first slot with
    the same name is used.
    """
    candidates = [
        slot
        for slot in slots
        if slot.impl is None
        and slot.decl is not None
        and slot.class_name == owner
        and _simple_name(slot.decl).lower() == name.lower()
    ]
    for slot in candidates:
        if _parameter_count(slot.heading) == count:
            return slot
    return candidates[0] if candidates else None


def _simple_name(node: SyntaxNode) -> str:
    """Return the last segment of a qualified routine name."""
    return node.text.rpartition(".")[2]


def _parameter_count(node: SyntaxNode) -> int:
    """Count the formal parameters of a heading."""
    params = node.child("params")
    return len(params.children_of("param")) if params else 0


def _build_function(slot: _Slot) -> Function:
    """Freeze a slot into a ``Function``."""
    heading = slot.heading
    name = _simple_name(heading)
    if slot.impl is not None:
        qualified_name = slot.impl.text
    elif slot.class_name:
        qualified_name = f"{slot.class_name}.{name}"
    else:
        qualified_name = name
    kind_node = heading.child("routine_kind")
    directives = frozenset(
        directive.text
        for node in (slot.decl, slot.impl)
        if node is not None
        for directive in node.children_of("directive")
    )
    body: SyntaxNode | None = None
    if slot.impl is not None:
        body = slot.impl.child("block") or slot.impl.child("asm_block")
    if body is None:
        statements: tuple[SyntaxNode, ...] = ()
    elif body.kind == "block":
        statements = tuple(body.children)
    else:
        statements = (body,)
    return Function(
        name=name,
        qualified_name=qualified_name,
        class_name=slot.class_name,
        kind=cast(RoutineKind, kind_node.text if kind_node else "procedure"),
        parameter_count=_parameter_count(heading),
        statements=statements,
        documented=slot.documented,
        visibility=slot.visibility,
        directives=directives,
        has_body=body is not None,
        references=_routine_references(slot.impl) if slot.impl is not None else frozenset(),
        line=heading.line,
    )


def _routine_references(routine: SyntaxNode) -> frozenset[str]:
    """Return names a routine body references, minus its own locals."""
    used: set[str] = set()
    local: set[str] = set()
    for node in routine.walk():
        if node.kind == "ident":
            used.add(node.text.lower())
        elif node.kind in ("param", "variable", "constant", "type_decl"):
            local.add(node.text.lower())
        elif node.kind == "inline_var":
            local.update(name.lower() for name in node.text.split(","))
        elif node.kind == "routine" and node is not routine:
            local.add(_simple_name(node).lower())
    return frozenset(used - local)


def _unit_references(root: SyntaxNode) -> frozenset[str]:
    """Return names referenced outside every routine body."""
    references: set[str] = set()
    stack = [root]
    while stack:
        node = stack.pop()
        if node.kind == "routine":
            continue
        if node.kind == "ident":
            references.add(node.text.lower())
        elif node.kind in ("read_accessor", "write_accessor"):
            references.add(node.text.rpartition(".")[2].lower())
        stack.extend(node.children)
    return frozenset(references)
