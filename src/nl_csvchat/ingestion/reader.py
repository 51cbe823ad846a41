from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union
import csv
import io
import pandas as pd

from nl_csvchat.logging.logger import get_logger
from nl_csvchat.exceptions.errors import ParseError

log = get_logger("ingestion.reader")

@dataclass(frozen=True)
class ParsedTable:
    header: List[str]
    rows: List[List[str]]
    encoding_used: Optional[str]
    bad_lines_skipped: int

def decode_content(raw: Union[str, bytes], fallback_encodings: Sequence[str]) -> tuple[str, Optional[str]]:
    if isinstance(raw, str):
        return raw, None

    last_err: Optional[Exception] = None
    for enc in fallback_encodings:
        try:
            return raw.decode(enc), enc
        except (UnicodeDecodeError, LookupError) as e:
            last_err = e
            log.warning("Encoding error", extra={"encoding": enc, "error": str(e)})
    raise ParseError(f"Failed to decode upload with encodings: {list(fallback_encodings)}") from last_err

def _content_line_numbers(text: str, delimiter: str) -> List[int]:
    # 1-based source line of every row pandas keeps; it drops lines holding one blank field.
    lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    return [n for n, ln in enumerate(lines, start=1) if ln.strip() or delimiter in ln]

def parse_delimited(
    raw: Union[str, bytes],
    delimiter: str = ",",
    fallback_encodings: Sequence[str] = ("utf-8-sig", "latin-1"),
    skip_bad_lines: bool = False,
) -> ParsedTable:
    """Split delimited text into a header and text rows.

    Fields are split strictly on `delimiter`; quoting and embedded newlines are not
    supported, so a quoted field containing the delimiter shifts the row's arity.
    """
    text, enc = decode_content(raw, fallback_encodings)

    # Too-long rows come back as empty placeholders so every frame row keeps its line.
    overlong: List[int] = []

    def _too_many_fields(fields: List[str]) -> List[str]:
        overlong.append(len(fields))
        return []

    try:
        df = pd.read_csv(
            io.StringIO(text),
            sep=delimiter,
            header=None,
            dtype=str,
            keep_default_na=False,
            quoting=csv.QUOTE_NONE,
            skip_blank_lines=True,
            engine="python",
            on_bad_lines=_too_many_fields,
        )
    except pd.errors.EmptyDataError as e:
        raise ParseError("Header row is empty.") from e
    except pd.errors.ParserError as e:
        log.exception("Unexpected parser error", extra={"encoding": enc})
        raise ParseError(f"Could not parse upload: {e}") from e

    line_numbers = _content_line_numbers(text, delimiter)
    records = df.itertuples(index=False, name=None)

    first = next(records, None)
    if first is None:
        raise ParseError("Header row is empty.")
    header = [str(h).strip() for h in first]
    if any(not h for h in header):
        raise ParseError(f"Header row has an empty column name: {delimiter.join(header)!r}")
    seen = set()
    for h in header:
        key = h.lower()
        if key in seen:
            raise ParseError(f"Duplicate column name in header: {h!r}")
        seen.add(key)

    rows: List[List[str]] = []
    skipped = 0
    for pos, record in enumerate(records, start=1):
        present = [v for v in record if not pd.isna(v)]
        if len(present) == len(header):
            rows.append([v.strip() for v in present])
            continue

        # pandas pads short rows with NaN; a fully empty record is an overlong placeholder.
        width = len(present) if present else overlong.pop(0)
        lineno = line_numbers[pos] if pos < len(line_numbers) else None
        if not skip_bad_lines:
            raise ParseError(f"Line {lineno} has {width} fields; header has {len(header)}.")
        skipped += 1
        log.warning(
            "Skipped row with wrong field count",
            extra={"line": lineno, "fields": width, "expected": len(header)},
        )

    log.info(
        "Parsed delimited content",
        extra={"columns": len(header), "rows": len(rows), "skipped": skipped, "encoding": enc},
    )
    return ParsedTable(header=header, rows=rows, encoding_used=enc, bad_lines_skipped=skipped)
