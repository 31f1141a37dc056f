"""Lexer for relation expressions (``children.[pets(onlyDogs), movies]``, ``parent^3``)."""

import ply.lex as lex

from ..errors import RelationExpressionError


class RelationExpressionLexer:
    """Tokenizer for relation expressions."""

    tokens = [
        "IDENTIFIER",
        "INTEGER",
        "DOT",
        "COMMA",
        "LPAREN",
        "RPAREN",
        "LBRACKET",
        "RBRACKET",
        "PLUS",
        "CARET",
        "STAR",
    ]

    t_DOT = r"\."
    t_COMMA = r","
    t_LPAREN = r"\("
    t_RPAREN = r"\)"
    t_LBRACKET = r"\["
    t_RBRACKET = r"\]"
    t_PLUS = r"\+"
    t_CARET = r"\^"
    t_STAR = r"\*"
    t_ignore = " \t\r\n"

    def __init__(self) -> None:
        self.lexer: lex.Lexer = None  # type: ignore

    def t_INTEGER(self, t: lex.LexToken) -> lex.LexToken:
        r"\d+"
        t.value = int(t.value)
        return t

    def t_IDENTIFIER(self, t: lex.LexToken) -> lex.LexToken:
        r"[a-zA-Z_$][a-zA-Z0-9_$]*"
        return t

    def t_error(self, t: lex.LexToken) -> None:
        raise RelationExpressionError(
            f"illegal character '{t.value[0]}' at position {t.lexpos} in relation expression"
        )

    def build(self, **kwargs) -> None:  # type: ignore
        self.lexer = lex.lex(module=self, **kwargs)

    def input(self, data: str) -> None:
        self.lexer.input(data)

    def token(self) -> lex.LexToken | None:
        return self.lexer.token()

    def tokenize(self, data: str) -> list[lex.LexToken]:
        self.input(data)
        tokens = []
        while True:
            tok = self.token()
            if tok is None:
                break
            tokens.append(tok)
        return tokens
