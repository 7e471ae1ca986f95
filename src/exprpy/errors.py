from __future__ import annotations


class ExprpyError(Exception):
    """Base class for every error raised by exprpy."""


class ParseError(ExprpyError):
    def __init__(self, message: str, line_number: int | None = None, line: str | None = None):
        self.line_number = line_number
        self.line = line
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)


class MalformedRecord(ParseError):
    """Alignment line with missing fields or a bad position."""


class MalformedAnnotation(ParseError):
    """Annotation line with missing fields or non-integer coordinates."""


class InvalidInterval(ParseError):
    def __init__(self, gene_name: str, start: int, end: int,
                 line_number: int | None = None, line: str | None = None):
        self.gene_name = gene_name
        self.start = start
        self.end = end
        super().__init__(
            f"gene {gene_name!r} has empty or inverted interval [{start}, {end})",
            line_number=line_number,
            line=line,
        )


class UnknownGene(ExprpyError, KeyError):
    def __init__(self, gene_name: str):
        self.gene_name = gene_name
        super().__init__(f"gene {gene_name!r} is not in the annotation")

    # KeyError.__str__ would repr() the message
    def __str__(self) -> str:
        return self.args[0]


class EmptyLibrary(ExprpyError):
    """No signal to normalize against: the scale factor would be zero."""
