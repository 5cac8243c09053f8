"""Payload Format Sniffing.

Exports from the clinical systems arrive with an .xls extension whether
they are real binary workbooks or HTML tables saved under that name. The
sniffer looks at the first meaningful byte to tell them apart.
"""

from feedsync.domain.models import DocumentFormat

UTF8_BOM = b"\xef\xbb\xbf"
SNIFF_WINDOW = 100
_WHITESPACE = frozenset(b" \t\r\n")


def detect(data: bytes) -> DocumentFormat:
    """Classify a payload as HTML or binary workbook.

    Parameters:
        data: Raw payload bytes (only the first bytes are inspected)

    Returns:
        DocumentFormat: HTML when the first non-whitespace byte is '<',
            BINARY_WORKBOOK otherwise (including empty payloads)
    """
    start = len(UTF8_BOM) if data[:len(UTF8_BOM)] == UTF8_BOM else 0
    for byte in data[start:start + SNIFF_WINDOW]:
        if byte in _WHITESPACE:
            continue
        return DocumentFormat.HTML if byte == ord("<") else DocumentFormat.BINARY_WORKBOOK
    return DocumentFormat.BINARY_WORKBOOK
