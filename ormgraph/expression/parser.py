"""LALR parser for relation expressions.

Grammar::

    expression : path_list
    path_list  : path | path_list COMMA path
    path       : segment | segment DOT path | LBRACKET path_list RBRACKET
    segment    : IDENTIFIER args recursion
               | PLUS IDENTIFIER args
               | STAR args
    args       : <empty> | LPAREN RPAREN | LPAREN name_list RPAREN
    recursion  : <empty> | CARET | CARET INTEGER

``+name`` is the same as ``name^`` (unbounded recursion).
"""

from __future__ import annotations

import threading

import ply.yacc as yacc

from ..errors import RelationExpressionError
from .lexer import RelationExpressionLexer
from .node import RelationExpression


class RelationExpressionParser:
    """Parser turning expression text into a RelationExpression tree."""

    tokens = RelationExpressionLexer.tokens

    def __init__(self) -> None:
        self._lexer = RelationExpressionLexer()
        self._parser: yacc.LRParser | None = None
        self._lock = threading.Lock()

    def build(self, **kwargs) -> None:  # type: ignore
        self._lexer.build(debug=False, errorlog=yacc.NullLogger())
        kwargs.setdefault("debug", False)
        kwargs.setdefault("write_tables", False)
        kwargs.setdefault("errorlog", yacc.NullLogger())
        self._parser = yacc.yacc(module=self, **kwargs)

    def parse(self, text: str) -> RelationExpression:
        """Parse text into a root node (name ``""``); empty text gives an empty root."""
        root = RelationExpression()
        if not text.strip():
            return root
        with self._lock:
            if self._parser is None:
                self.build()
            nodes = self._parser.parse(text, lexer=self._lexer.lexer)
        for node in nodes:
            root.add_child(node)
        return root.with_filters(root.filters)

    # ---- Grammar ----

    def p_expression(self, p: yacc.YaccProduction) -> None:
        """expression : path_list"""
        p[0] = p[1]

    def p_path_list_single(self, p: yacc.YaccProduction) -> None:
        """path_list : path"""
        p[0] = list(p[1])

    def p_path_list_multi(self, p: yacc.YaccProduction) -> None:
        """path_list : path_list COMMA path"""
        p[0] = p[1] + p[3]

    def p_path_segment(self, p: yacc.YaccProduction) -> None:
        """path : segment"""
        p[0] = [p[1]]

    def p_path_nested(self, p: yacc.YaccProduction) -> None:
        """path : segment DOT path"""
        node = p[1]
        for child in p[3]:
            node.add_child(child)
        p[0] = [node]

    def p_path_group(self, p: yacc.YaccProduction) -> None:
        """path : LBRACKET path_list RBRACKET"""
        p[0] = p[2]

    def p_segment_name(self, p: yacc.YaccProduction) -> None:
        """segment : IDENTIFIER args recursion"""
        recursive, max_depth = p[3]
        p[0] = RelationExpression(name=p[1], args=p[2], recursive=recursive, max_depth=max_depth)

    def p_segment_plus(self, p: yacc.YaccProduction) -> None:
        """segment : PLUS IDENTIFIER args"""
        p[0] = RelationExpression(name=p[2], args=p[3], recursive=True)

    def p_segment_star(self, p: yacc.YaccProduction) -> None:
        """segment : STAR args"""
        p[0] = RelationExpression(name="*", args=p[2])

    def p_args_empty(self, p: yacc.YaccProduction) -> None:
        """args : """
        p[0] = []

    def p_args_none(self, p: yacc.YaccProduction) -> None:
        """args : LPAREN RPAREN"""
        p[0] = []

    def p_args_list(self, p: yacc.YaccProduction) -> None:
        """args : LPAREN name_list RPAREN"""
        p[0] = p[2]

    def p_name_list_single(self, p: yacc.YaccProduction) -> None:
        """name_list : IDENTIFIER"""
        p[0] = [p[1]]

    def p_name_list_multi(self, p: yacc.YaccProduction) -> None:
        """name_list : name_list COMMA IDENTIFIER"""
        p[0] = p[1] + [p[3]]

    def p_recursion_none(self, p: yacc.YaccProduction) -> None:
        """recursion : """
        p[0] = (False, None)

    def p_recursion_unbounded(self, p: yacc.YaccProduction) -> None:
        """recursion : CARET"""
        p[0] = (True, None)

    def p_recursion_bounded(self, p: yacc.YaccProduction) -> None:
        """recursion : CARET INTEGER"""
        if p[2] < 1:
            raise RelationExpressionError(f"recursion depth must be at least 1, got {p[2]}")
        p[0] = (True, p[2])

    def p_error(self, p: yacc.YaccProduction) -> None:
        if p:
            raise RelationExpressionError(f"syntax error at '{p.value}' (position {p.lexpos})")
        raise RelationExpressionError("unexpected end of relation expression")


_parser = RelationExpressionParser()


def parse(text: str) -> RelationExpression:
    return _parser.parse(text)
