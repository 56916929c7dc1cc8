"""Plain-text rendering for CLI output and cross-version reports."""

from __future__ import annotations

from collections.abc import Sequence

_OUTCOME_LABELS = {
    "passed": "✓ PASS",
    "failed": "✗ FAIL",
    "error": "⚠ ERROR",
    "skipped": "⊘ SKIP",
    "expected_failure": "✓ XFAIL",
    "unexpected_success": "✗ XPASS",
}

_JUSTIFY = {"l": str.ljust, "r": str.rjust, "c": str.center}


def format_duration(seconds: float) -> str:
    """Render elapsed time as ``8s``, ``1m 23s`` or ``1h 12m 34s``; fractions are dropped."""
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes:2d}m {secs:2d}s"
    if minutes:
        return f"{minutes}m {secs:2d}s"
    return f"{secs}s"


def format_status_icon(status: str) -> str:
    """Label a unittest outcome (``passed``, ``failed``, ...) for the results table."""
    return _OUTCOME_LABELS.get(status, status.upper())


def format_value(value: object) -> str:
    """Render a recorded statistic compactly; floats get at most 3 decimals."""
    if value is None:
        return ""
    if isinstance(value, float):
        return f"{value:.3f}".rstrip("0").rstrip(".")
    return str(value)


def format_table(
    headers: Sequence[str],
    rows: Sequence[Sequence[str]],
    *,
    alignments: Sequence[str] | None = None,
    indent: int = 2,
) -> str:
    """Lay out *rows* under *headers* with a dashed rule between them.

    Short rows are padded with empty cells and long ones cut to the header
    count. *alignments* holds ``'l'``, ``'r'`` or ``'c'`` per column (left
    by default). Trailing blanks are stripped from every line.
    """
    if not headers:
        return ""
    ncols = len(headers)
    justify = [_JUSTIFY[a] for a in (alignments or [])][:ncols]
    justify += [str.ljust] * (ncols - len(justify))

    body = [[*row, *([""] * ncols)][:ncols] for row in rows]
    widths = [max(len(cell) for cell in column) for column in zip(headers, *body)]

    def render(cells: Sequence[str]) -> str:
        padded = (just(cell, width) for just, cell, width in zip(justify, cells, widths))
        return (" " * indent + "  ".join(padded)).rstrip()

    rule = " " * indent + "  ".join("-" * width for width in widths)
    return "\n".join([render(headers), rule, *(render(row) for row in body)])


def format_section_header(title: str, width: int = 80) -> str:
    """Return ``─── Title ───...`` padded with rules to *width* characters."""
    lead = f"─── {title} "
    return lead + "─" * max(0, width - len(lead))
