"""Parser for scratch-off game CSV exports."""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Iterable

from pydantic import ValidationError

from scratchers.importer.errors import CSVStructureError
from scratchers.importer.schema import PARSED_ROW_FIELDS, ParsedRow

logger = logging.getLogger(__name__)

DELIMITER_CANDIDATES = (",", "\t", ";", "|")
MAX_LOGGED_DROPS = 3
MANDATORY_FIELDS = ("game_number", "game_name", "state")

_LEADING_FLOAT = re.compile(r"^[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?")
_LEADING_INT = re.compile(r"^[-+]?\d+")

EXACT_HEADERS: dict[str, str] = {
    "game_number": "game_number",
    "game_name": "game_name",
    "state_code": "state",
    "state": "state",
    "ticket_price": "price",
    "price": "price",
    "top_prize_amount": "top_prize",
    "top_prize": "top_prize",
    "top_prizes_remaining": "top_prizes_remaining",
    "top_prizes_total_original": "total_top_prizes",
    "total_top_prizes": "total_top_prizes",
    "overall_odds": "overall_odds",
    "odds": "overall_odds",
    "game_added_date": "start_date",
    "start_date": "start_date",
    "end_date": "end_date",
    "image_url": "image_url",
    "source_url": "source_url",
    "source": "source",
}


def _has(*parts: str) -> Callable[[str], bool]:
    return lambda header: all(part in header for part in parts)


def _is_top_prize(header: str) -> bool:
    return (
        "top" in header
        and "prize" in header
        and not any(word in header for word in ("remaining", "total", "claimed"))
    )


# Evaluated top to bottom; first match wins.
FUZZY_RULES: list[tuple[Callable[[str], bool], str]] = [
    (_has("game", "number"), "game_number"),
    (_has("game", "name"), "game_name"),
    (_has("state"), "state"),
    (_has("price"), "price"),
    (_is_top_prize, "top_prize"),
    (lambda h: "remaining" in h and "claimed" not in h, "top_prizes_remaining"),
    (lambda h: "total" in h and "prize" in h and "claimed" not in h, "total_top_prizes"),
    (_has("odds"), "overall_odds"),
    (lambda h: ("start" in h or "added" in h) and "date" in h, "start_date"),
    (_has("end", "date"), "end_date"),
    (_has("image"), "image_url"),
    (_has("source", "url"), "source_url"),
    (lambda h: "source" in h and "url" not in h, "source"),
]


def parse_money(value: str) -> float:
    """Parse a currency amount; anything unparseable or negative becomes 0."""

    cleaned = re.sub(r"[$,]", "", value).strip()
    match = _LEADING_FLOAT.match(cleaned)
    if not match:
        return 0.0
    number = float(match.group())
    return number if number > 0 else 0.0


def parse_count(value: str) -> int:
    cleaned = value.replace(",", "").strip()
    match = _LEADING_INT.match(cleaned)
    if not match:
        return 0
    number = int(match.group())
    return number if number > 0 else 0


def _text(value: str) -> str:
    return value


def _upper(value: str) -> str:
    return value.upper()


FIELD_CONVERTERS: dict[str, Callable[[str], Any]] = {
    "game_number": _text,
    "game_name": _text,
    "state": _upper,
    "price": parse_money,
    "top_prize": parse_money,
    "top_prizes_remaining": parse_count,
    "total_top_prizes": parse_count,
    "overall_odds": _text,
    "start_date": _text,
    "end_date": _text,
    "image_url": _text,
    "source": _text,
    "source_url": _text,
}


def detect_delimiter(first_line: str) -> str:
    """Pick the candidate with the most occurrences; ties go to the comma."""

    best = DELIMITER_CANDIDATES[0]
    best_count = first_line.count(best)
    for candidate in DELIMITER_CANDIDATES[1:]:
        count = first_line.count(candidate)
        if count > best_count:
            best, best_count = candidate, count
    return best


def normalize_header(cell: str) -> str:
    return cell.replace('"', "").strip().lower()


def split_line(line: str, delimiter: str) -> list[str]:
    """Split on *delimiter* outside double quotes. Quote characters are dropped."""

    values: list[str] = []
    current: list[str] = []
    inside_quotes = False
    for char in line:
        if char == '"':
            inside_quotes = not inside_quotes
        elif char == delimiter and not inside_quotes:
            values.append("".join(current).strip())
            current = []
        else:
            current.append(char)
    values.append("".join(current).strip())
    return values


def map_header(header: str, column_mapping: dict[str, str] | None = None) -> str | None:
    """Resolve a normalized header to a ParsedRow field name, or None."""

    if column_mapping:
        target = column_mapping.get(header)
        if target in PARSED_ROW_FIELDS:
            return target
    exact = EXACT_HEADERS.get(header)
    if exact:
        return exact
    for predicate, field_name in FUZZY_RULES:
        if predicate(header):
            return field_name
    return None


def normalize_column_mapping(raw: dict | None) -> dict[str, str]:
    """Normalize a user mapping {header: field}. Raises ValueError on unknown fields."""

    if not raw:
        return {}
    mapping: dict[str, str] = {}
    for header, target in raw.items():
        if not target:
            continue
        field_name = str(target).strip().lower()
        if field_name not in PARSED_ROW_FIELDS:
            raise ValueError(f"Unknown target field for column {header!r}: {target!r}")
        mapping[normalize_header(str(header))] = field_name
    return mapping


def _split_lines(csv_text: str) -> list[str]:
    return csv_text.strip().split("\n")


def describe_headers(
    csv_text: str,
    column_mapping: dict[str, str] | None = None,
) -> tuple[str, list[tuple[str, str | None]]]:
    """Return the detected delimiter and each header with its mapped field."""

    lines = _split_lines(csv_text)
    delimiter = detect_delimiter(lines[0])
    headers = [normalize_header(cell) for cell in lines[0].split(delimiter)]
    return delimiter, [(header, map_header(header, column_mapping)) for header in headers]


def _map_values(
    fields: list[str | None],
    values: list[str],
) -> dict[str, Any]:
    row: dict[str, Any] = {}
    for index, field_name in enumerate(fields):
        if field_name is None:
            continue
        raw = values[index].replace('"', "").strip() if index < len(values) else ""
        row[field_name] = FIELD_CONVERTERS[field_name](raw)
    return row


def _missing_mandatory(row: dict[str, Any]) -> list[str]:
    return [name for name in MANDATORY_FIELDS if not row.get(name)]


def _build_row(row: dict[str, Any], line_number: int) -> ParsedRow:
    optional = {
        key: (value or None) if isinstance(value, str) else value
        for key, value in row.items()
        if key not in MANDATORY_FIELDS
    }
    return ParsedRow(
        game_number=row["game_number"],
        game_name=row["game_name"],
        state=row["state"],
        line_number=line_number,
        **optional,
    )


def iter_rows(
    lines: Iterable[tuple[int, str]],
    fields: list[str | None],
    delimiter: str,
) -> Iterable[tuple[int, dict[str, Any]]]:
    for line_number, raw_line in lines:
        line = raw_line.strip()
        if not line:
            continue
        yield line_number, _map_values(fields, split_line(line, delimiter))


def parse_csv(
    csv_text: str,
    column_mapping: dict[str, str] | None = None,
) -> list[ParsedRow]:
    """Parse CSV text into admitted ParsedRow values.

    Only a file without data rows raises (CSVStructureError). Rows missing
    game_number, game_name or state are dropped; numeric parse failures
    become 0 and the row is still admitted.
    """

    lines = _split_lines(csv_text)
    if len(lines) < 2:
        raise CSVStructureError("CSV file is empty or has no data rows")

    delimiter = detect_delimiter(lines[0])
    logger.info("Detected delimiter=%r", delimiter)

    headers = [normalize_header(cell) for cell in lines[0].split(delimiter)]
    fields = [map_header(header, column_mapping) for header in headers]
    logger.info("CSV headers (%s): %s", len(headers), headers)
    unmapped = [header for header, field_name in zip(headers, fields) if field_name is None]
    if unmapped:
        logger.info("Ignoring unmapped columns: %s", unmapped)

    rows: list[ParsedRow] = []
    dropped = 0
    data_lines = ((index + 1, line) for index, line in enumerate(lines) if index > 0)
    for line_number, mapped in iter_rows(data_lines, fields, delimiter):
        missing = _missing_mandatory(mapped)
        if missing:
            dropped += 1
            if dropped <= MAX_LOGGED_DROPS:
                logger.info(
                    "Dropped line=%s missing required fields: %s",
                    line_number,
                    ", ".join(missing),
                )
            continue
        try:
            rows.append(_build_row(mapped, line_number))
        except ValidationError as exc:
            dropped += 1
            logger.warning("Dropped line=%s invalid row: %s", line_number, exc)

    logger.info(
        "Parsed %s valid rows out of %s data lines (dropped=%s)",
        len(rows),
        len(lines) - 1,
        dropped,
    )
    return rows
