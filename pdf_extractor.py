"""
PDF token extraction with page boundary tracking.
"""
import fitz  # PyMuPDF
from loguru import logger

from models import PageText, Token
from row_builder import DEFAULT_COLUMN_GAP, DEFAULT_TOLERANCE, build_rows, rows_to_text

PAGE_SEPARATOR = "=== PAGE {page_number} ==="


class DocumentError(ValueError):
    """The input document is empty or unreadable."""


def _open(pdf_bytes: bytes) -> fitz.Document:
    if not pdf_bytes:
        raise DocumentError("Document is empty")
    try:
        return fitz.open(stream=pdf_bytes, filetype="pdf")
    except (fitz.FileDataError, RuntimeError, ValueError) as e:
        raise DocumentError(f"Unreadable PDF: {e}") from e


def extract_page_tokens(pdf_bytes: bytes) -> list[list[Token]]:
    """
    Extract positioned text spans from every page.

    Args:
        pdf_bytes: Raw PDF byte stream

    Returns:
        One token list per page, in page order
    """
    doc = _open(pdf_bytes)
    pages: list[list[Token]] = []

    for page in doc:
        tokens = []
        for block in page.get_text("dict")["blocks"]:
            if block.get("type") != 0:  # image block
                continue
            for line in block["lines"]:
                for span in line["spans"]:
                    x0, _, x1, _ = span["bbox"]
                    # Baseline keeps mixed font sizes on one row
                    tokens.append(Token(
                        text=span["text"],
                        x=span["origin"][0],
                        y=span["origin"][1],
                        width=x1 - x0
                    ))
        pages.append(tokens)

    doc.close()
    return pages


def extract_text_with_pages(
    pdf_bytes: bytes,
    tolerance: float = DEFAULT_TOLERANCE,
    column_gap: float = DEFAULT_COLUMN_GAP
) -> tuple[str, list[PageText]]:
    """
    Extract row-reconstructed text from a PDF while tracking page boundaries.

    Args:
        pdf_bytes: Raw PDF byte stream
        tolerance: Vertical band height used to group tokens into rows
        column_gap: Horizontal gap that marks a column break

    Returns:
        Tuple of (full_text, list of PageText objects)

    Raises:
        DocumentError: If the PDF is empty, unreadable or has no text layer
    """
    pages: list[PageText] = []
    full_text_parts = []
    char_offset = 0

    for index, tokens in enumerate(extract_page_tokens(pdf_bytes)):
        rows = build_rows(tokens, tolerance)
        text = rows_to_text(rows, column_gap)
        text += '\n\n' + PAGE_SEPARATOR.format(page_number=index + 1) + '\n\n'

        pages.append(PageText(
            page_number=index + 1,  # 1-indexed
            text=text,
            char_start=char_offset,
            char_end=char_offset + len(text)
        ))

        full_text_parts.append(text)
        char_offset += len(text)

    full_text = ''.join(full_text_parts)
    if not any(page.text.replace(PAGE_SEPARATOR.format(page_number=page.page_number), '').strip()
               for page in pages):
        raise DocumentError("PDF has no extractable text (image-only or blank)")

    logger.debug(f"Extracted {len(full_text)} characters from {len(pages)} pages")
    return full_text, pages


def get_page_for_char_offset(pages: list[PageText], char_offset: int) -> int:
    """
    Find which page a character offset falls on.

    Args:
        pages: List of PageText with char ranges
        char_offset: Character position in full text

    Returns:
        Page number (1-indexed)
    """
    for page in pages:
        if page.char_start <= char_offset < page.char_end:
            return page.page_number
    # If past end, return last page
    return pages[-1].page_number if pages else 1


def get_total_pages(pdf_bytes: bytes) -> int:
    """Get total page count of a PDF."""
    doc = _open(pdf_bytes)
    count = len(doc)
    doc.close()
    return count
