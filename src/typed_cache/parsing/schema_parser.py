"""Parser for the descriptor schema DSL.

A schema lists descriptors, each a name followed by its columns::

    # market orders as returned by GetOrders
    market.Order {
        price: CY,
        volRemaining: R8,
        typeID: I4,
        bid: BOOL,
        issueDate: 64,
    }

Column types are ADO type names (case-insensitive) or numeric codes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import ply.yacc as yacc

from typed_cache.ado import AdoType, Column, Descriptor
from typed_cache.parsing.schema_lexer import SchemaLexer


@dataclass
class ColumnSpec:
    """Specification for a column before resolution."""

    name: str
    type_ref: str | int
    lineno: int = 0


@dataclass
class DescriptorSpec:
    """Specification for a descriptor before resolution."""

    name: str
    columns: list[ColumnSpec]
    lineno: int = 0


class SchemaParser:
    """Parser for the descriptor schema DSL."""

    tokens = SchemaLexer.tokens

    def __init__(self) -> None:
        self.lexer = SchemaLexer()
        self.lexer.build()
        self.parser: yacc.LRParser = None  # type: ignore

    def p_schema(self, p: yacc.YaccProduction) -> None:
        """schema : descriptor_list"""
        p[0] = p[1]

    def p_schema_empty(self, p: yacc.YaccProduction) -> None:
        """schema :"""
        p[0] = []

    def p_descriptor_list_single(self, p: yacc.YaccProduction) -> None:
        """descriptor_list : descriptor"""
        p[0] = [p[1]]

    def p_descriptor_list_multiple(self, p: yacc.YaccProduction) -> None:
        """descriptor_list : descriptor_list descriptor"""
        p[0] = p[1]
        p[0].append(p[2])

    def p_descriptor(self, p: yacc.YaccProduction) -> None:
        """descriptor : name LBRACE column_list RBRACE
                      | name LBRACE column_list COMMA RBRACE"""
        p[0] = DescriptorSpec(name=p[1], columns=p[3], lineno=p.lineno(2))

    def p_descriptor_empty(self, p: yacc.YaccProduction) -> None:
        """descriptor : name LBRACE RBRACE"""
        p[0] = DescriptorSpec(name=p[1], columns=[], lineno=p.lineno(2))

    def p_name(self, p: yacc.YaccProduction) -> None:
        """name : IDENTIFIER
                | STRING"""
        p[0] = p[1]

    def p_column_list_single(self, p: yacc.YaccProduction) -> None:
        """column_list : column"""
        p[0] = [p[1]]

    def p_column_list_multiple(self, p: yacc.YaccProduction) -> None:
        """column_list : column_list COMMA column"""
        p[0] = p[1] + [p[3]]

    def p_column(self, p: yacc.YaccProduction) -> None:
        """column : name COLON IDENTIFIER
                  | name COLON INTEGER"""
        p[0] = ColumnSpec(name=p[1], type_ref=p[3], lineno=p.lineno(2))

    def p_error(self, p: yacc.YaccProduction) -> None:
        if p:
            raise SyntaxError(f"Syntax error at '{p.value}' (line {p.lineno})")
        else:
            raise SyntaxError("Syntax error at end of input")

    def build(self, **kwargs: Any) -> None:
        """Build the parser."""
        self.parser = yacc.yacc(module=self, **kwargs)

    def parse(self, data: str) -> list[Descriptor]:
        """Parse a schema and return its descriptors in definition order."""
        if self.parser is None:
            self.build(debug=False, write_tables=False)

        self.lexer.input("")
        specs = self.parser.parse(data, lexer=self.lexer.lexer)
        if specs is None:
            specs = []
        return self._resolve_specs(specs)

    def _resolve_specs(self, specs: list[DescriptorSpec]) -> list[Descriptor]:
        """Resolve column types and reject duplicate names."""
        descriptors: list[Descriptor] = []
        seen: set[str] = set()
        for spec in specs:
            if spec.name in seen:
                raise ValueError(f"Descriptor '{spec.name}' is already defined (line {spec.lineno})")
            seen.add(spec.name)

            columns: list[Column] = []
            column_names: set[str] = set()
            for col in spec.columns:
                if col.name in column_names:
                    raise ValueError(
                        f"Descriptor '{spec.name}': duplicate column '{col.name}' (line {col.lineno})"
                    )
                column_names.add(col.name)
                if isinstance(col.type_ref, int):
                    ado_type = AdoType.from_code(col.type_ref)
                else:
                    ado_type = AdoType.from_name(col.type_ref)
                columns.append(Column(name=col.name, ado_type=ado_type))

            descriptors.append(Descriptor(name=spec.name, columns=tuple(columns)))
        return descriptors
