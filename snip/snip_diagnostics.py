"""
Helpers for building, filtering and rendering compiler diagnostics.
"""
import re
import warnings
from typing import Iterable, List, Optional

from snip.snip_datatypes import Diagnostic, Severity


def classify(diagnostics: Iterable[Diagnostic]) -> List[Diagnostic]:
    """Returns the error-severity diagnostics, in the order they were emitted."""
    return [d for d in diagnostics if d.severity is Severity.ERROR]


def has_errors(diagnostics: Iterable[Diagnostic]) -> bool:
    return any(d.severity is Severity.ERROR for d in diagnostics)


def non_blocking(diagnostics: Iterable[Diagnostic]) -> List[Diagnostic]:
    return [d for d in diagnostics if d.severity is not Severity.ERROR]


def from_syntax_error(exc: SyntaxError) -> Diagnostic:
    return Diagnostic(
        severity=Severity.ERROR,
        code="syntax-error",
        message=exc.msg or "invalid syntax",
        line=exc.lineno,
        col=exc.offset,
        end_line=getattr(exc, 'end_lineno', None),
        end_col=getattr(exc, 'end_offset', None),
    )


def _kebab(name: str) -> str:
    return re.sub(r'(?<!^)(?=[A-Z])', '-', name).lower()


def from_warning(record: warnings.WarningMessage) -> Diagnostic:
    """Converts a warning recorded during parse/compile into a diagnostic."""
    category = record.category
    match category.__name__:
        case "SyntaxWarning":
            code = "syntax-warning"
        case "DeprecationWarning" | "PendingDeprecationWarning":
            code = "deprecation-warning"
        case other:
            code = _kebab(other)
    return Diagnostic(
        severity=Severity.WARNING,
        code=code,
        message=str(record.message),
        line=record.lineno or None,
    )


def source_context(source: str, line: Optional[int], col: Optional[int], radius: int = 2) -> str:
    """Renders the lines around `line`, marking the line and the column."""
    lines = source.splitlines()
    if not line or line < 1 or line > len(lines):
        return ""
    start = max(1, line - radius)
    end = min(len(lines), line + radius)
    width = len(str(end))
    out = []
    for i in range(start, end + 1):
        prefix = ">" if i == line else " "
        ln = str(i).rjust(width)
        out.append(f"{prefix} {ln} | {lines[i - 1]}")
        if i == line and col is not None:
            caret = " " * max(col - 1, 0)
            out.append(f"  {' ' * width} | {caret}^")
    return "\n".join(out)


def format_diagnostic(diag: Diagnostic, source: Optional[str] = None, radius: int = 0) -> str:
    """Formats a diagnostic, with a caret source excerpt when the source is known."""
    text = str(diag)
    if source is None:
        return text
    ctx = source_context(source, diag.line, diag.col, radius=radius)
    return f"{text}\n{ctx}" if ctx else text
