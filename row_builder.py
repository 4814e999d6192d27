"""
Rebuilds table rows from positioned text tokens.

PDF pages carry no table markup, only glyph runs with coordinates. Tokens
whose vertical positions fall in the same band are treated as one row, and
wide horizontal gaps inside a row become tab separators so later pattern
matching can tell columns apart.
"""
from models import Row, Token

DEFAULT_TOLERANCE = 3.0
DEFAULT_COLUMN_GAP = 15.0
DEFAULT_WORD_GAP = 3.0


def quantize(y: float, tolerance: float = DEFAULT_TOLERANCE) -> float:
    """Snap a vertical position to its band."""
    return round(y / tolerance) * tolerance


def build_rows(tokens: list[Token], tolerance: float = DEFAULT_TOLERANCE) -> list[Row]:
    """
    Group tokens into rows.

    Args:
        tokens: Tokens from one page
        tolerance: Height of a vertical band in PDF units

    Returns:
        Rows ordered top to bottom, cells ordered left to right
    """
    bands: dict[float, list[tuple[float, str, float]]] = {}

    for token in tokens:
        if not token.text or not token.text.strip():
            continue
        band = quantize(token.y, tolerance)
        bands.setdefault(band, []).append((token.x, token.text, token.width or 0.0))

    rows = []
    for band in sorted(bands):
        # sorted() is stable, so tokens sharing an x keep their input order
        cells = sorted(bands[band], key=lambda cell: cell[0])
        rows.append(Row(band=band, cells=tuple(cells)))
    return rows


def row_to_text(
    row: Row,
    column_gap: float = DEFAULT_COLUMN_GAP,
    word_gap: float = DEFAULT_WORD_GAP
) -> str:
    """
    Serialize a row, marking column breaks with tabs.

    Args:
        row: Row to serialize
        column_gap: Gap above which a tab is inserted
        word_gap: Gap above which a space is inserted

    Returns:
        Row text without trailing whitespace
    """
    parts = []
    prev_end = None

    for x, text, width in row.cells:
        if prev_end is not None:
            gap = x - prev_end
            if gap > column_gap:
                parts.append('\t')
            elif gap > word_gap:
                parts.append(' ')
        parts.append(text)
        prev_end = x + width

    return ''.join(parts).rstrip()


def rows_to_text(
    rows: list[Row],
    column_gap: float = DEFAULT_COLUMN_GAP,
    word_gap: float = DEFAULT_WORD_GAP
) -> str:
    """Serialize rows one per line."""
    return '\n'.join(row_to_text(row, column_gap, word_gap) for row in rows)
