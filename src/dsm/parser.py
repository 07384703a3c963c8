# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Recursive-descent Delphi parser building position-annotated syntax trees."""

import logging

from dsm.lexer import DelphiSyntaxError, Token, tokenize
from dsm.syntax import Comment, NodeKind, ParseFailure, SyntaxNode, SyntaxTree

logger = logging.getLogger(__name__)

ROUTINE_KEYWORDS: frozenset[str] = frozenset(
    {"procedure", "function", "constructor", "destructor", "operator"}
)
ROUTINE_DIRECTIVES: frozenset[str] = frozenset(
    {
        "abstract", "assembler", "cdecl", "deprecated", "dispid", "dynamic",
        "experimental", "export", "external", "far", "final", "forward",
        "inline", "library", "local", "message", "near", "overload",
        "override", "pascal", "platform", "register", "reintroduce",
        "safecall", "static", "stdcall", "unsafe", "varargs", "virtual",
        "winapi",
    }
)  # fmt: skip
VISIBILITY_KEYWORDS: frozenset[str] = frozenset(
    {"private", "protected", "public", "published", "automated"}
)
PROPERTY_SPECIFIERS: frozenset[str] = frozenset(
    {
        "read", "write", "index", "default", "nodefault", "stored",
        "implements", "readonly", "writeonly", "dispid", "add", "remove",
    }
)  # fmt: skip
_RELATIONAL_OPERATORS: frozenset[str] = frozenset(
    {"=", "<>", "<", ">", "<=", ">=", "in", "is"}
)
_ADDITIVE_OPERATORS: frozenset[str] = frozenset({"+", "-", "or", "xor"})
_MULTIPLICATIVE_OPERATORS: frozenset[str] = frozenset(
    {"*", "/", "div", "mod", "and", "shl", "shr", "as"}
)
_STATEMENT_END: tuple[str, ...] = (";", "end", "else", "until", "except", "finally")
_GENERIC_ARG_FOLLOWERS: frozenset[str] = frozenset({"(", ".", ")", ";", ",", "]"})


class SyntaxTreeBuilder:
    """Build syntax trees from preprocessed Delphi source text."""

    def parse(self, text: str, file_path: str = "") -> SyntaxTree | ParseFailure:
        """Parse source text into a syntax tree.

        Args:
            text: Preprocessed source text.
            file_path: Path reported in diagnostics.

        Returns:
            The syntax tree, or a ``ParseFailure`` describing why the text
            could not be parsed.
        """
        try:
            tokens = tokenize(text)
            code_tokens = [t for t in tokens if t.kind not in ("comment", "directive")]
            root = _Parser(code_tokens).parse_goal()
        except DelphiSyntaxError as exc:
            logger.warning(f"Parse failure (file_path={file_path} error={exc})")
            return ParseFailure(file_path=file_path, message=str(exc))
        except RecursionError:
            logger.warning(f"Parse failure (file_path={file_path} error=nesting too deep)")
            return ParseFailure(file_path=file_path, message="Nesting too deep")

        comments = tuple(
            Comment(
                text=token.text,
                line=token.line,
                end_line=token.end_line,
                column=token.column,
                is_directive=token.kind == "directive",
            )
            for token in tokens
            if token.kind in ("comment", "directive")
        )
        code_lines: set[int] = set()
        for token in tokens:
            if token.kind in ("comment", "eof"):
                continue
            code_lines.update(range(token.line, token.end_line + 1))
        return SyntaxTree(
            file_path=file_path,
            root=root,
            comments=comments,
            code_lines=frozenset(code_lines),
            line_count=len(text.splitlines()),
        )


class _Parser:
    """Parse a comment-free token stream."""

    def __init__(self, tokens: list[Token]) -> None:
        self._tokens = tokens
        self._pos = 0

    # -- token helpers -----------------------------------------------------

    @property
    def _current(self) -> Token:
        return self._tokens[self._pos]

    def _peek(self, offset: int = 1) -> Token:
        """Return the token ``offset`` positions ahead, clamped to end of file."""
        index = min(self._pos + offset, len(self._tokens) - 1)
        return self._tokens[index]

    def _advance(self) -> Token:
        """Consume and return the current token; end of file is never consumed."""
        token = self._tokens[self._pos]
        if token.kind != "eof":
            self._pos += 1
        return token

    @staticmethod
    def _matches(token: Token, values: tuple[str, ...]) -> bool:
        return token.kind in ("identifier", "keyword", "symbol") and token.value in values

    def _at(self, *values: str) -> bool:
        return self._matches(self._current, values)

    def _accept(self, *values: str) -> Token | None:
        """Consume the current token if it matches one of ``values``."""
        if self._at(*values):
            return self._advance()
        return None

    def _expect(self, *values: str) -> Token:
        """Consume the current token or raise if it matches none of ``values``."""
        if self._at(*values):
            return self._advance()
        raise self._error(f"Expected {' or '.join(repr(v) for v in values)}")

    def _expect_identifier(self, allow_keywords: bool = False) -> Token:
        """Consume an identifier, optionally allowing reserved words."""
        token = self._current
        if token.kind == "identifier" or (allow_keywords and token.kind == "keyword"):
            return self._advance()
        raise self._error("Expected identifier")

    def _error(self, message: str) -> DelphiSyntaxError:
        """Build a syntax error positioned at the current token."""
        token = self._current
        found = token.text if token.kind != "eof" else "end of file"
        return DelphiSyntaxError(f"{message} but found {found!r}", token.line, token.column)

    @staticmethod
    def _node(kind: NodeKind, token: Token, text: str = "") -> SyntaxNode:
        return SyntaxNode(kind=kind, line=token.line, column=token.column, text=text)

    def _at_identifier_followed_by(self, *values: str) -> bool:
        """Return whether an identifier is followed by one of ``values``."""
        return self._current.kind == "identifier" and self._matches(self._peek(), values)

    # -- goals -------------------------------------------------------------

    def parse_goal(self) -> SyntaxNode:
        """Parse a whole compilation unit.

        Returns:
            Root node of kind ``unit``, ``program``, ``library`` or ``package``.

        Raises:
            DelphiSyntaxError: If the token stream is not a valid goal.
        """
        if self._at("unit"):
            return self._parse_unit()
        if self._at("program", "library"):
            return self._parse_program()
        if self._at("package"):
            return self._parse_package()
        raise self._error("Expected 'unit', 'program', 'library' or 'package'")

    def _parse_dotted_name(self) -> str:
        """Parse a possibly qualified name such as ``System.SysUtils``."""
        parts = [self._expect_identifier(allow_keywords=True).text]
        while self._at(".") and self._peek().kind in ("identifier", "keyword"):
            self._advance()
            parts.append(self._advance().text)
        return ".".join(parts)

    def _skip_to_semicolon(self) -> None:
        """Skip to and past the next ``;``."""
        while not self._at(";"):
            if self._current.kind == "eof":
                raise self._error("Expected ';'")
            self._advance()
        self._advance()

    def _parse_unit(self) -> SyntaxNode:
        """Parse interface and implementation sections plus init/final blocks."""
        start = self._expect("unit")
        node = self._node("unit", start, self._parse_dotted_name())
        self._skip_to_semicolon()

        interface_token = self._expect("interface")
        interface = self._node("interface_section", interface_token)
        if self._at("uses"):
            interface.children.append(self._parse_uses())
        self._parse_declarations(interface, ("implementation",), in_interface=True)
        node.children.append(interface)

        implementation_token = self._expect("implementation")
        implementation = self._node("implementation_section", implementation_token)
        if self._at("uses"):
            implementation.children.append(self._parse_uses())
        self._parse_declarations(
            implementation, ("initialization", "finalization", "begin", "end")
        )
        node.children.append(implementation)

        if self._at("initialization", "begin"):
            init = self._node("initialization", self._advance())
            init.children.extend(self._parse_statement_list(("finalization", "end")))
            node.children.append(init)
        if self._at("finalization"):
            final = self._node("finalization", self._advance())
            final.children.extend(self._parse_statement_list(("end",)))
            node.children.append(final)
        self._expect("end")
        self._expect(".")
        return node

    def _parse_program(self) -> SyntaxNode:
        """Parse a ``program`` or ``library`` with its optional main block."""
        start = self._advance()
        kind: NodeKind = "library" if start.value == "library" else "program"
        node = self._node(kind, start, self._parse_dotted_name())
        self._skip_to_semicolon()
        if self._at("uses"):
            node.children.append(self._parse_uses())
        self._parse_declarations(node, ("begin", "end"))
        if self._at("begin"):
            main = self._node("main_block", self._advance())
            main.children.extend(self._parse_statement_list(("end",)))
            node.children.append(main)
        self._expect("end")
        self._expect(".")
        return node

    def _parse_package(self) -> SyntaxNode:
        """Parse a package's ``requires`` and ``contains`` clauses."""
        start = self._advance()
        node = self._node("package", start, self._parse_dotted_name())
        self._skip_to_semicolon()
        while self._at("requires", "contains"):
            node.children.append(self._parse_uses())
        self._expect("end")
        self._expect(".")
        return node

    def _parse_uses(self) -> SyntaxNode:
        """Parse a uses-style clause into ``unit_ref`` children."""
        node = self._node("uses", self._advance())
        while True:
            token = self._current
            node.children.append(self._node("unit_ref", token, self._parse_dotted_name()))
            if self._accept("in"):
                if self._current.kind != "string":
                    raise self._error("Expected file name")
                self._advance()
            if not self._accept(","):
                break
        self._expect(";")
        return node

    # -- declarations ------------------------------------------------------

    def _parse_declarations(
        self,
        container: SyntaxNode,
        terminators: tuple[str, ...],
        in_interface: bool = False,
    ) -> None:
        """Parse declaration sections into ``container`` until a terminator.

        Args:
            container: Node receiving the parsed sections and routines.
            terminators: Tokens that end the declaration part.
            in_interface: Whether routines are headings without bodies.
        """
        attributes: list[SyntaxNode] = []
        while not self._at(*terminators):
            if self._at("type"):
                container.children.append(self._parse_type_section())
            elif self._at("const", "resourcestring"):
                container.children.append(self._parse_const_section())
            elif self._at("var", "threadvar"):
                container.children.append(self._parse_var_section())
            elif self._at("label"):
                container.children.append(self._node("label_section", self._advance()))
                self._skip_to_semicolon()
            elif self._at("exports"):
                container.children.append(self._parse_exports())
            elif self._at("["):
                attributes.extend(self._parse_attributes())
                continue
            elif self._at_routine_start():
                if in_interface:
                    routine = self._parse_heading("routine_decl")
                else:
                    routine = self._parse_routine()
                routine.children[:0] = attributes
                container.children.append(routine)
            else:
                raise self._error("Unexpected token in declaration section")
            attributes = []

    def _at_routine_start(self) -> bool:
        """Return whether the current token opens a routine heading."""
        if self._at("class"):
            return self._matches(self._peek(), tuple(ROUTINE_KEYWORDS))
        if self._at("operator"):
            return self._peek().kind == "identifier"
        return self._at("procedure", "function", "constructor", "destructor")

    def _parse_attributes(self) -> list[SyntaxNode]:
        """Parse consecutive ``[...]`` attribute lists."""
        nodes: list[SyntaxNode] = []
        while self._at("["):
            start = self._advance()
            name = self._current.text if self._current.kind == "identifier" else ""
            node = self._node("attribute", start, name)
            self._skip_balanced(("]",), node.children)
            self._expect("]")
            nodes.append(node)
        return nodes

    def _parse_exports(self) -> SyntaxNode:
        """Parse an ``exports`` clause into ``ident`` children."""
        node = self._node("exports", self._advance())
        while True:
            token = self._current
            node.children.append(self._node("ident", token, self._parse_dotted_name()))
            self._skip_balanced((",", ";"))
            if not self._accept(","):
                break
        self._expect(";")
        return node

    def _parse_const_section(self) -> SyntaxNode:
        """Parse a ``const`` or ``resourcestring`` section."""
        node = self._node("const_section", self._advance())
        while self._at("[") or self._at_identifier_followed_by("=", ":"):
            if self._at("["):
                self._parse_attributes()
                continue
            name = self._advance()
            constant = self._node("constant", name, name.text)
            if self._accept(":"):
                type_token = self._current
                type_text = self._skip_balanced(("=",))
                constant.children.append(self._node("type_ref", type_token, type_text))
            self._expect("=")
            self._skip_balanced((";",), constant.children)
            self._expect(";")
            node.children.append(constant)
        return node

    def _parse_var_section(self) -> SyntaxNode:
        """Parse a ``var`` or ``threadvar`` section."""
        node = self._node("var_section", self._advance())
        while self._at("[") or self._at_identifier_followed_by(",", ":"):
            if self._at("["):
                self._parse_attributes()
                continue
            node.children.extend(self._parse_variable_group("variable"))
            self._expect(";")
        return node

    def _parse_variable_group(self, kind: NodeKind) -> list[SyntaxNode]:
        """Parse ``A, B: Type [= value]`` into one node per name.

        Identifiers in the type and initializer are kept as ``ident`` children so
        that references outside routine bodies can be collected later.
        """
        names = [self._expect_identifier()]
        while self._accept(","):
            names.append(self._expect_identifier())
        self._expect(":")
        type_token = self._current
        references: list[SyntaxNode] = []
        type_text = self._skip_balanced((";", "=", "absolute", "end"), references)
        if self._at("=", "absolute"):
            self._advance()
            self._skip_balanced((";", "end"), references)
        nodes = []
        for name in names:
            node = self._node(kind, name, name.text)
            node.children.append(self._node("type_ref", type_token, type_text))
            node.children.extend(
                SyntaxNode("ident", ref.line, ref.column, ref.text) for ref in references
            )
            nodes.append(node)
        return nodes

    def _parse_type_section(self) -> SyntaxNode:
        """Parse a ``type`` section into ``type_decl`` nodes."""
        node = self._node("type_section", self._advance())
        attributes: list[SyntaxNode] = []
        while self._at("[") or self._at_identifier_followed_by("=", "<"):
            if self._at("["):
                attributes.extend(self._parse_attributes())
                continue
            name = self._advance()
            if self._at("<"):
                self._skip_generic_args()
            self._expect("=")
            self._accept("type")
            decl = self._node("type_decl", name, name.text)
            decl.children.extend(attributes)
            decl.children.append(self._parse_type_definition())
            self._skip_to_semicolon()
            node.children.append(decl)
            attributes = []
        return node

    def _parse_type_definition(self) -> SyntaxNode:
        """Parse the right-hand side of a type declaration.

        Class, object, record and interface types become ``class_type`` nodes;
        forward declarations and every other type are recorded without members.
        """
        self._accept("packed")
        token = self._current
        if self._at("class"):
            following = self._peek()
            if self._matches(following, (";",)):
                self._advance()
                return self._node("forward_type", token, "class")
            if self._matches(following, ("of",)):
                node = self._node("other_type", token, "class of")
                self._skip_balanced((";",), node.children)
                return node
            self._advance()
            if self._accept("helper"):
                return self._parse_helper(token)
            self._accept("abstract", "sealed")
            return self._parse_structured(token, "class", "published")
        if self._at("object"):
            self._advance()
            return self._parse_structured(token, "object", "public")
        if self._at("record"):
            self._advance()
            if self._accept("helper"):
                return self._parse_helper(token)
            return self._parse_structured(token, "record", "public")
        if self._at("interface", "dispinterface"):
            if self._matches(self._peek(), (";",)):
                self._advance()
                return self._node("forward_type", token, "interface")
            self._advance()
            return self._parse_structured(token, "interface", "public")
        node = self._node("other_type", token)
        node.text = self._skip_balanced((";",), node.children)
        return node

    def _parse_helper(self, token: Token) -> SyntaxNode:
        """Parse a class or record helper body."""
        node = self._node("class_type", token, "helper")
        self._expect("for")
        heritage = self._node("heritage", self._current)
        heritage.children.append(self._node("type_ref", self._current, self._parse_type_name()))
        node.children.append(heritage)
        self._parse_class_body(node, "public")
        self._expect("end")
        return node

    def _parse_structured(self, token: Token, category: str, default_visibility: str) -> SyntaxNode:
        """Parse the heritage and body of a class, object, record or interface."""
        node = self._node("class_type", token, category)
        if self._at("("):
            node.children.append(self._parse_heritage())
        if category in ("class", "object") and self._at(";"):
            return node
        self._parse_class_body(node, default_visibility)
        self._expect("end")
        return node

    def _parse_heritage(self) -> SyntaxNode:
        """Parse the parenthesized parent and interface list."""
        node = self._node("heritage", self._expect("("))
        while True:
            token = self._current
            node.children.append(self._node("type_ref", token, self._parse_type_name()))
            if not self._accept(","):
                break
        self._expect(")")
        return node

    def _parse_type_name(self) -> str:
        """Parse a qualified type name, skipping generic arguments."""
        parts = [self._expect_identifier(allow_keywords=True).text]
        if self._at("<"):
            self._skip_generic_args()
        while self._at(".") and self._peek().kind in ("identifier", "keyword"):
            self._advance()
            parts.append(self._advance().text)
            if self._at("<"):
                self._skip_generic_args()
        return ".".join(parts)

    def _skip_generic_args(self) -> None:
        """Skip a balanced ``<...>`` generic argument list."""
        self._expect("<")
        depth = 1
        while depth:
            if self._current.kind == "eof":
                raise self._error("Unterminated generic argument list")
            token = self._advance()
            if token.text == "<":
                depth += 1
            elif token.text == ">":
                depth -= 1

    def _parse_class_body(self, node: SyntaxNode, default_visibility: str) -> None:
        """Parse members into visibility sections until ``end``.

        Members before the first visibility keyword go into a section carrying
        ``default_visibility``.
        """
        section = self._node("visibility_section", self._current, default_visibility)
        node.children.append(section)
        attributes: list[SyntaxNode] = []
        while not self._at("end"):
            member: SyntaxNode | None = None
            members: list[SyntaxNode] = []
            if self._at("strict") and self._matches(self._peek(), ("private", "protected")):
                start = self._advance()
                visibility = f"strict {self._advance().value}"
                section = self._node("visibility_section", start, visibility)
                node.children.append(section)
                continue
            if self._at(*VISIBILITY_KEYWORDS) and not self._matches(self._peek(), (":", ",")):
                start = self._advance()
                section = self._node("visibility_section", start, start.value)
                node.children.append(section)
                continue
            if self._at("["):
                attributes.extend(self._parse_attributes())
                continue
            if self._at_routine_start():
                member = self._parse_heading("method_decl")
            elif self._at("class") and self._matches(self._peek(), ("var", "threadvar")):
                self._advance()
                self._advance()
                members = self._parse_fields()
            elif self._at("class") and self._matches(self._peek(), ("property",)):
                self._advance()
                member = self._parse_property()
            elif self._at("property"):
                member = self._parse_property()
            elif self._at("var", "threadvar"):
                self._advance()
                members = self._parse_fields()
            elif self._at("const"):
                member = self._parse_const_section()
            elif self._at("type"):
                member = self._parse_type_section()
            elif self._at("case"):
                self._skip_variant_part()
            elif self._current.kind == "identifier":
                members = self._parse_variable_group("field")
                self._accept(";")
            else:
                raise self._error("Unexpected token in type body")
            if member is not None:
                members = [member]
            for item in members:
                item.children[:0] = attributes
                section.children.append(item)
            attributes = []

    def _parse_fields(self) -> list[SyntaxNode]:
        """Parse fields following a ``var`` or ``class var`` keyword."""
        fields: list[SyntaxNode] = []
        while self._at_identifier_followed_by(",", ":"):
            fields.extend(self._parse_variable_group("field"))
            self._accept(";")
        return fields

    def _skip_variant_part(self) -> None:
        """Skip a variant record part up to the record's ``end``."""
        depth = 0
        while not (depth == 0 and self._at("end")):
            if self._current.kind == "eof":
                raise self._error("Unterminated variant record part")
            token = self._advance()
            if token.text in ("(", "["):
                depth += 1
            elif token.text in (")", "]"):
                depth -= 1

    def _parse_property(self) -> SyntaxNode:
        """Parse a property and its read/write accessors."""
        self._expect("property")
        name = self._expect_identifier(allow_keywords=True)
        node = self._node("property", name, name.text)
        if self._at("["):
            self._advance()
            self._skip_balanced(("]",))
            self._expect("]")
        if self._accept(":"):
            type_token = self._current
            type_text = self._skip_balanced((";", *PROPERTY_SPECIFIERS))
            node.children.append(self._node("type_ref", type_token, type_text))
        while not self._at(";"):
            specifier = self._current
            if self._accept("read", "write", "add", "remove"):
                kind: NodeKind = "write_accessor" if specifier.value in ("write", "remove") else "read_accessor"
                node.children.append(self._node(kind, self._current, self._parse_dotted_name()))
                if self._at("["):
                    self._advance()
                    self._skip_balanced(("]",))
                    self._expect("]")
            elif self._accept(*PROPERTY_SPECIFIERS):
                self._skip_balanced((";", *PROPERTY_SPECIFIERS))
            else:
                raise self._error("Unexpected property specifier")
        self._expect(";")
        if self._at("default") and self._matches(self._peek(), (";",)):
            self._advance()
            self._advance()
        return node

    def _parse_heading(self, kind: NodeKind) -> SyntaxNode:
        """Parse a routine heading with its parameters and directives.

        Args:
            kind: Node kind to create for the heading.

        Returns:
            Heading node named by the possibly qualified routine name.
        """
        is_class_member = self._accept("class") is not None
        keyword = self._expect(*ROUTINE_KEYWORDS)
        name_token = self._current
        parts = [self._expect_identifier(allow_keywords=True).text]
        if self._at("<"):
            self._skip_generic_args()
        while self._accept("."):
            parts.append(self._expect_identifier(allow_keywords=True).text)
            if self._at("<"):
                self._skip_generic_args()
        node = self._node(kind, name_token, ".".join(parts))
        node.children.append(self._node("routine_kind", keyword, keyword.value))
        if is_class_member:
            node.children.append(self._node("directive", keyword, "class"))
        if self._at("="):
            self._advance()
            self._parse_dotted_name()
        if self._at("("):
            node.children.append(self._parse_params())
        if self._accept(":"):
            type_token = self._current
            node.children.append(
                self._node("return_type", type_token, self._skip_balanced((";",)))
            )
        self._expect(";")
        self._parse_directives(node)
        return node

    def _parse_directives(self, node: SyntaxNode) -> None:
        """Append directive nodes for the directives following a heading."""
        while (
            self._current.kind in ("identifier", "keyword")
            and self._current.value in ROUTINE_DIRECTIVES
            and not self._matches(self._peek(), (":", ",", "="))
        ):
            directive = self._advance()
            node.children.append(self._node("directive", directive, directive.value))
            self._skip_balanced((";", "begin", "end"))
            self._accept(";")

    def _parse_params(self) -> SyntaxNode:
        """Parse a formal parameter list into ``param`` nodes."""
        node = self._node("params", self._expect("("))
        while not self._at(")"):
            if self._at("["):
                self._parse_attributes()
                continue
            if self._at("const", "var") or (
                self._at("out", "constref") and self._peek().kind == "identifier"
            ):
                self._advance()
            if self._at("["):
                self._parse_attributes()
            names = [self._expect_identifier(allow_keywords=True)]
            while self._accept(","):
                names.append(self._expect_identifier(allow_keywords=True))
            type_text = ""
            if self._accept(":"):
                type_text = self._skip_balanced((";", ")", "="))
            defaults: list[SyntaxNode] = []
            if self._accept("="):
                self._skip_balanced((";", ")"), defaults)
            for name in names:
                param = self._node("param", name, name.text)
                if type_text:
                    param.children.append(self._node("type_ref", name, type_text))
                param.children.extend(defaults)
                node.children.append(param)
            if not self._accept(";"):
                break
        self._expect(")")
        return node

    def _parse_routine(self) -> SyntaxNode:
        """Parse a routine implementation, or a forward/external heading."""
        node = self._parse_heading("routine")
        directives = {child.text for child in node.children_of("directive")}
        if directives & {"external", "forward"}:
            node.kind = "routine_decl"
            return node
        self._parse_declarations(node, ("begin", "asm"))
        if self._at("asm"):
            node.children.append(self._parse_asm())
        else:
            block = self._parse_compound()
            block.kind = "block"
            node.children.append(block)
        self._expect(";")
        return node

    def _skip_balanced(
        self, stops: tuple[str, ...], references: list[SyntaxNode] | None = None
    ) -> str:
        """Consume tokens up to a depth-0 stop token and return their text."""
        parts: list[str] = []
        depth = 0
        nesting = 0
        previous = ""
        while True:
            token = self._current
            if token.kind == "eof":
                raise self._error("Unexpected end of file")
            value = token.value if token.kind in ("identifier", "keyword", "symbol") else ""
            if depth == 0 and nesting == 0 and value in stops:
                break
            if value in ("(", "["):
                depth += 1
            elif value in (")", "]"):
                if depth == 0:
                    break
                depth -= 1
            elif token.kind == "keyword" and value in ("record", "object") and previous != "of":
                nesting += 1
            elif token.kind == "keyword" and value == "end":
                if nesting == 0:
                    break
                nesting -= 1
            if token.kind == "identifier" and references is not None:
                references.append(self._node("ident", token, token.text))
            if parts and _is_word(parts[-1]) and _is_word(token.text):
                parts.append(" ")
            parts.append(token.text)
            previous = value
            self._advance()
        return "".join(parts)

    # -- statements --------------------------------------------------------

    def _parse_statement_list(self, terminators: tuple[str, ...]) -> list[SyntaxNode]:
        """Parse ``;``-separated statements up to one of ``terminators``."""
        statements: list[SyntaxNode] = []
        while not self._at(*terminators):
            statement = self._parse_statement()
            if statement is not None:
                statements.append(statement)
            if self._accept(";"):
                continue
            if self._at(*terminators):
                break
            raise self._error("Expected ';'")
        return statements

    def _parse_statement(self) -> SyntaxNode | None:
        """Parse one statement; return ``None`` for an empty statement."""
        token = self._current
        if token.kind == "eof":
            raise self._error("Unexpected end of file in statement")
        if self._at(*_STATEMENT_END):
            return None
        if token.kind in ("identifier", "number") and self._matches(self._peek(), (":",)):
            self._advance()
            self._advance()
            label = self._node("label_stmt", token, token.text)
            inner = self._parse_statement()
            if inner is not None:
                label.children.append(inner)
            return label
        if token.kind == "keyword":
            handler = {
                "begin": self._parse_compound,
                "if": self._parse_if,
                "case": self._parse_case,
                "while": self._parse_while,
                "repeat": self._parse_repeat,
                "for": self._parse_for,
                "with": self._parse_with,
                "try": self._parse_try,
                "raise": self._parse_raise,
                "goto": self._parse_goto,
                "asm": self._parse_asm,
                "var": self._parse_inline_declaration,
                "const": self._parse_inline_declaration,
            }.get(token.value)
            if handler is not None:
                return handler()
        target = self._parse_expression()
        if self._accept(":="):
            node = self._node("assignment", token)
            node.children.extend([target, self._parse_expression()])
            return node
        node = self._node("call_statement", token)
        node.children.append(target)
        return node

    def _parse_compound(self) -> SyntaxNode:
        node = self._node("compound", self._expect("begin"))
        node.children.extend(self._parse_statement_list(("end",)))
        self._expect("end")
        return node

    def _parse_condition(self) -> SyntaxNode:
        """Wrap an expression in a ``condition`` node."""
        node = self._node("condition", self._current)
        node.children.append(self._parse_expression())
        return node

    def _wrap(self, kind: NodeKind, token: Token) -> SyntaxNode:
        """Create a ``kind`` node holding the next statement."""
        node = self._node(kind, token)
        statement = self._parse_statement()
        if statement is not None:
            node.children.append(statement)
        return node

    def _parse_if(self) -> SyntaxNode:
        node = self._node("if", self._advance())
        node.children.append(self._parse_condition())
        node.children.append(self._wrap("then", self._expect("then")))
        if self._at("else"):
            node.children.append(self._wrap("else", self._advance()))
        return node

    def _parse_case(self) -> SyntaxNode:
        """Parse a case statement with its branches and optional else part."""
        node = self._node("case", self._advance())
        selector = self._node("selector", self._current)
        selector.children.append(self._parse_expression())
        node.children.append(selector)
        self._expect("of")
        while not self._at("end", "else", "otherwise"):
            branch = self._node("case_branch", self._current)
            labels = self._node("case_labels", self._current)
            while True:
                label = self._parse_expression()
                if self._at(".."):
                    range_node = self._node("range", self._advance())
                    range_node.children.extend([label, self._parse_expression()])
                    label = range_node
                labels.children.append(label)
                if not self._accept(","):
                    break
            self._expect(":")
            branch.children.append(labels)
            statement = self._parse_statement()
            if statement is not None:
                branch.children.append(statement)
            node.children.append(branch)
            if not self._accept(";"):
                break
        if self._at("else", "otherwise"):
            default = self._node("case_else", self._advance())
            default.children.extend(self._parse_statement_list(("end",)))
            node.children.append(default)
        self._expect("end")
        return node

    def _parse_while(self) -> SyntaxNode:
        node = self._node("while", self._advance())
        node.children.append(self._parse_condition())
        self._expect("do")
        statement = self._parse_statement()
        if statement is not None:
            node.children.append(statement)
        return node

    def _parse_repeat(self) -> SyntaxNode:
        node = self._node("repeat", self._advance())
        node.children.extend(self._parse_statement_list(("until",)))
        self._expect("until")
        node.children.append(self._parse_condition())
        return node

    def _parse_for(self) -> SyntaxNode:
        """Parse counted ``for`` loops and ``for ... in`` loops."""
        start = self._advance()
        self._accept("var")
        variable = self._expect_identifier()
        if self._accept(":"):
            self._skip_balanced((":=", "in"))
        if self._accept("in"):
            node = self._node("for_in", start)
            node.children.append(self._node("for_var", variable, variable.text))
            node.children.append(self._parse_expression())
        else:
            node = self._node("for", start)
            node.children.append(self._node("for_var", variable, variable.text))
            self._expect(":=")
            node.children.append(self._parse_expression())
            self._expect("to", "downto")
            node.children.append(self._parse_expression())
        self._expect("do")
        statement = self._parse_statement()
        if statement is not None:
            node.children.append(statement)
        return node

    def _parse_with(self) -> SyntaxNode:
        node = self._node("with", self._advance())
        node.children.append(self._parse_expression())
        while self._accept(","):
            node.children.append(self._parse_expression())
        self._expect("do")
        statement = self._parse_statement()
        if statement is not None:
            node.children.append(statement)
        return node

    def _parse_try(self) -> SyntaxNode:
        """Parse ``try`` with either a ``finally`` or an ``except`` block."""
        node = self._node("try", self._advance())
        node.children.extend(self._parse_statement_list(("except", "finally")))
        if self._at("finally"):
            block = self._node("finally_block", self._advance())
            block.children.extend(self._parse_statement_list(("end",)))
        else:
            block = self._node("except_block", self._expect("except"))
            if self._at("on"):
                while self._at("on"):
                    block.children.append(self._parse_handler())
                    self._accept(";")
                if self._at("else"):
                    fallback = self._node("handler_else", self._advance())
                    fallback.children.extend(self._parse_statement_list(("end",)))
                    block.children.append(fallback)
            else:
                block.children.extend(self._parse_statement_list(("end",)))
        node.children.append(block)
        self._expect("end")
        return node

    def _parse_handler(self) -> SyntaxNode:
        """Parse one ``on E: Type do`` exception handler."""
        start = self._advance()
        if self._at_identifier_followed_by(":"):
            self._advance()
            self._advance()
        handler = self._node("on_handler", start, self._parse_type_name())
        self._expect("do")
        statement = self._parse_statement()
        if statement is not None:
            handler.children.append(statement)
        return handler

    def _parse_raise(self) -> SyntaxNode:
        node = self._node("raise", self._advance())
        if not self._at(*_STATEMENT_END):
            node.children.append(self._parse_expression())
            if self._accept("at"):
                node.children.append(self._parse_expression())
        return node

    def _parse_goto(self) -> SyntaxNode:
        node = self._node("goto", self._advance())
        node.text = self._advance().text
        return node

    def _parse_asm(self) -> SyntaxNode:
        """Skip an ``asm`` block, keeping only its position."""
        node = self._node("asm_block", self._expect("asm"))
        while not self._at("end"):
            if self._current.kind == "eof":
                raise self._error("Unterminated asm block")
            self._advance()
        self._advance()
        return node

    def _parse_inline_declaration(self) -> SyntaxNode:
        """Parse an inline ``var`` or ``const`` declaration statement."""
        node = self._node("inline_var", self._advance())
        names = [self._expect_identifier()]
        while self._accept(","):
            names.append(self._expect_identifier())
        node.text = ",".join(name.text for name in names)
        if self._accept(":"):
            self._skip_balanced((":=", "=", ";"))
        if self._accept(":=", "="):
            node.children.append(self._parse_expression())
        return node

    # -- expressions -------------------------------------------------------

    def _binary(self, operator: Token, left: SyntaxNode, right: SyntaxNode) -> SyntaxNode:
        node = self._node("binary", operator, operator.value)
        node.children.extend([left, right])
        return node

    def _parse_expression(self) -> SyntaxNode:
        """Parse a relational expression."""
        left = self._parse_simple_expression()
        while self._at(*_RELATIONAL_OPERATORS):
            operator = self._advance()
            left = self._binary(operator, left, self._parse_simple_expression())
        return left

    def _parse_simple_expression(self) -> SyntaxNode:
        """Parse an additive expression."""
        left = self._parse_term()
        while self._at(*_ADDITIVE_OPERATORS):
            operator = self._advance()
            left = self._binary(operator, left, self._parse_term())
        return left

    def _parse_term(self) -> SyntaxNode:
        """Parse a multiplicative expression."""
        left = self._parse_factor()
        while self._at(*_MULTIPLICATIVE_OPERATORS):
            operator = self._advance()
            left = self._binary(operator, left, self._parse_factor())
        return left

    def _parse_factor(self) -> SyntaxNode:
        """Parse an operand, unary operation or parenthesized expression."""
        token = self._current
        if self._at("not", "-", "+", "@", "@@"):
            self._advance()
            node = self._node("unary", token, token.value)
            node.children.append(self._parse_factor())
            return node
        if token.kind in ("number", "string"):
            self._advance()
            return self._node("literal", token, token.text)
        if self._at("nil"):
            self._advance()
            return self._node("literal", token, "nil")
        if self._at("("):
            self._advance()
            inner = self._parse_expression()
            self._expect(")")
            if self._at(".", "[", "(", "^"):
                designator = self._node("designator", token)
                designator.children.append(inner)
                self._parse_designator_parts(designator)
                return designator
            return inner
        if self._at("["):
            return self._parse_set()
        if self._at("inherited"):
            self._advance()
            node = self._node("inherited", token)
            if self._current.kind == "identifier":
                node.children.append(self._parse_designator())
            return node
        if self._at("procedure", "function"):
            return self._parse_anonymous_routine()
        if token.kind == "identifier" or self._at("string", "file"):
            return self._parse_designator()
        raise self._error("Expected expression")

    def _parse_set(self) -> SyntaxNode:
        """Parse a set constructor such as ``[1, 3..5]``."""
        node = self._node("set", self._expect("["))
        while not self._at("]"):
            element = self._parse_expression()
            if self._at(".."):
                range_node = self._node("range", self._advance())
                range_node.children.extend([element, self._parse_expression()])
                element = range_node
            node.children.append(element)
            if not self._accept(","):
                break
        self._expect("]")
        return node

    def _parse_designator(self) -> SyntaxNode:
        """Parse an identifier with its member, index and call suffixes."""
        token = self._advance()
        node = self._node("designator", token)
        node.children.append(self._node("ident", token, token.text))
        self._parse_designator_parts(node)
        return node

    def _parse_designator_parts(self, node: SyntaxNode) -> None:
        """Append member, index, call, dereference and generic suffixes."""
        while True:
            if self._at(".") and self._peek().kind in ("identifier", "keyword"):
                self._advance()
                member = self._advance()
                node.children.append(self._node("ident", member, member.text))
            elif self._at("["):
                index = self._node("index", self._advance())
                index.children.extend(self._parse_expression_list("]"))
                self._expect("]")
                node.children.append(index)
            elif self._at("("):
                args = self._node("args", self._advance())
                args.children.extend(self._parse_expression_list(")"))
                self._expect(")")
                node.children.append(args)
            elif self._at("^"):
                node.children.append(self._node("deref", self._advance()))
            elif self._at("<") and self._looks_like_generic_args():
                generic = self._node("generic_args", self._current)
                self._skip_generic_args()
                node.children.append(generic)
            else:
                return

    def _parse_expression_list(self, closer: str) -> list[SyntaxNode]:
        items: list[SyntaxNode] = []
        while not self._at(closer):
            items.append(self._parse_expression())
            while self._accept(":"):
                items.append(self._parse_expression())
            if not self._accept(","):
                break
        return items

    def _looks_like_generic_args(self) -> bool:
        """Return whether a ``<`` starts generic arguments rather than a comparison."""
        depth = 0
        for offset in range(0, 32):
            token = self._peek(offset)
            if token.text == "<":
                depth += 1
            elif token.text == ">":
                depth -= 1
                if depth == 0:
                    return self._matches(self._peek(offset + 1), tuple(_GENERIC_ARG_FOLLOWERS))
            elif token.kind == "identifier" or token.value == "string" or token.text in (".", ","):
                continue
            else:
                return False
        return False

    def _parse_anonymous_routine(self) -> SyntaxNode:
        """Parse an anonymous method expression."""
        keyword = self._advance()
        node = self._node("anonymous_routine", keyword, keyword.value)
        if self._at("("):
            node.children.append(self._parse_params())
        if self._accept(":"):
            type_token = self._current
            node.children.append(
                self._node(
                    "return_type",
                    type_token,
                    self._skip_balanced(("begin", "var", "const", "type")),
                )
            )
        self._parse_declarations(node, ("begin",))
        block = self._parse_compound()
        block.kind = "block"
        node.children.append(block)
        return node


def _is_word(text: str) -> bool:
    return bool(text) and (text[0].isalnum() or text[0] == "_") and (
        text[-1].isalnum() or text[-1] == "_"
    )
