"""CSV reading and writing for referral records.

Import side: decode an uploaded file, sniff its delimiter, map free-form
headers onto referral fields (see ``ColumnMapping``) and turn each row
into a record dict or a rejected-line issue. Nothing here touches the
database; the import route writes the parsed records in batches.

Export side: the fixed export column order and row rendering shared by
``/download`` and ``/metrics/export``.
"""

import csv
import io
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from utils.common import to_utc_iso, utc_now
from utils.config import ColumnMapping, KnownValues
from utils.formatting import format_yes_no
from utils.patterns import ISO_DATE, SLASH_ISO_DATE, US_DATE
from utils.strings import clean_optional, parse_bool, split_full_name, title_case
from utils.validation import ValidationResult, describe_missing, referral_problems

CANDIDATE_DELIMITERS = (",", ";", "\t")

NAME_FIELDS = ("first_name", "last_name", "full_name")

EXPORT_COLUMNS = [
    "id", "first_name", "last_name", "lead_source", "outreach_rep",
    "referral_source", "referral_out", "insurance_company", "program",
    "referral_sent_to", "admitted", "created_at", "created_by", "updated_at",
]


@dataclass
class ParsedImport:
    """Result of parsing one uploaded CSV file."""

    records: List[Dict[str, Any]] = field(default_factory=list)
    issues: ValidationResult = field(default_factory=ValidationResult)
    total_rows: int = 0
    skipped: int = 0
    unmapped_headers: List[str] = field(default_factory=list)
    delimiter: str = ","


def decode_upload(content: Union[bytes, str]) -> str:
    """Decode uploaded bytes as UTF-8, dropping a leading byte-order mark.

    Raises:
        ValueError: If the bytes are not valid UTF-8.
    """
    if isinstance(content, bytes):
        try:
            return content.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ValueError(f"File is not valid UTF-8 text ({exc.reason})") from exc
    return content.lstrip("\ufeff")


def sniff_delimiter(text: str) -> str:
    """Pick the delimiter that occurs most often in the first non-blank line.

    Only comma, semicolon and tab are considered; comma wins ties and
    is the fallback for a header with none of them.
    """
    header = next((line for line in text.splitlines() if line.strip()), "")
    counts = {d: header.count(d) for d in CANDIDATE_DELIMITERS}
    best = max(CANDIDATE_DELIMITERS, key=lambda d: counts[d])
    return best if counts[best] > 0 else ","


def parse_import_date(value: str) -> str:
    """Parse a date cell into the stored timestamp shape.

    Accepts ``YYYY-MM-DD``, ``MM/DD/YYYY``, ``YYYY/MM/DD`` and ISO-8601
    datetimes (a trailing ``Z`` is read as UTC).

    Raises:
        ValueError: If the value matches none of those shapes or names an
            impossible date.
    """
    s = value.strip()
    m = ISO_DATE.match(s) or SLASH_ISO_DATE.match(s)
    if m:
        year, month, day = (int(g) for g in m.groups())
        return datetime(year, month, day).isoformat()
    m = US_DATE.match(s)
    if m:
        month, day, year = (int(g) for g in m.groups())
        return datetime(year, month, day).isoformat()
    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"
    return to_utc_iso(datetime.fromisoformat(s))


def map_headers(header: Sequence[str]) -> tuple[Dict[int, str], List[str]]:
    """Map column positions to referral fields.

    Returns:
        ({column_index: field}, unmapped_header_names). When two columns map
        to the same field the first one wins and the other is reported as
        unmapped.
    """
    mapping: Dict[int, str] = {}
    unmapped: List[str] = []
    seen = set()
    for idx, raw in enumerate(header):
        name = (raw or "").strip()
        target = ColumnMapping.field_for_header(name)
        if target is None or target in seen:
            if name:
                unmapped.append(name)
            continue
        seen.add(target)
        mapping[idx] = target
    return mapping, unmapped


def _row_to_record(cells: Sequence[str], mapping: Dict[int, str],
                   now: str) -> Dict[str, Any]:
    raw: Dict[str, Any] = {}
    for idx, target in mapping.items():
        raw[target] = cells[idx] if idx < len(cells) else ""

    first = clean_optional(raw.get("first_name"))
    last = clean_optional(raw.get("last_name"))
    full = clean_optional(raw.get("full_name"))
    if full and not (first and last):
        split_first, split_last = split_full_name(full)
        first = first or split_first or None
        last = last or split_last or None

    lead = clean_optional(raw.get("lead_source"))
    if lead:
        lead = KnownValues.canonical_lead_source(lead) or title_case(lead)

    program = clean_optional(raw.get("program"))
    if program:
        program = KnownValues.canonical_program(program) or program
    destination = clean_optional(raw.get("referral_sent_to"))
    if destination:
        destination = KnownValues.canonical_destination(destination) or destination

    date_cell = clean_optional(raw.get("created_at"))
    created_at = parse_import_date(date_cell) if date_cell else now

    return {
        "first_name": first,
        "last_name": last,
        "lead_source": lead,
        "outreach_rep": clean_optional(raw.get("outreach_rep")),
        "referral_source": clean_optional(raw.get("referral_source")),
        "referral_out": clean_optional(raw.get("referral_out")),
        "insurance_company": clean_optional(raw.get("insurance_company")),
        "program": program,
        "referral_sent_to": destination,
        "admitted": parse_bool(raw.get("admitted")),
        "created_at": created_at,
    }


def parse_referral_csv(content: Union[bytes, str],
                       now: Optional[str] = None) -> ParsedImport:
    """Parse an uploaded referral CSV into record dicts.

    Blank lines before the header are skipped. Line numbers in issues are
    physical lines of the file (the header is line 1 when nothing precedes
    it) and point at the first physical line of the offending row.

    Args:
        content: Raw upload bytes (or already-decoded text)
        now: Timestamp for rows without a date column value (default: now)

    Returns:
        ParsedImport with accepted records, rejected-row issues and counts

    Raises:
        ValueError: If the file is empty, not UTF-8, malformed (for example
            a cell over the csv module's field size limit), or has no name
            column.
    """
    text = decode_upload(content)
    if not text.strip():
        raise ValueError("CSV file is empty")
    now = now or utc_now()

    result = ParsedImport(delimiter=sniff_delimiter(text))
    reader = csv.reader(io.StringIO(text, newline=""), delimiter=result.delimiter)
    try:
        _read_rows(reader, result, now)
    except csv.Error as exc:
        raise ValueError(f"Malformed CSV near line {reader.line_num}: {exc}") from exc
    return result


def _read_rows(reader, result: ParsedImport, now: str) -> None:
    header = next((row for row in reader if any((c or "").strip() for c in row)), None)
    if header is None:
        raise ValueError("CSV file has no header row")
    mapping, result.unmapped_headers = map_headers(header)
    if not any(target in NAME_FIELDS for target in mapping.values()):
        raise ValueError(
            "No name column found; expected a header such as "
            "'First Name'/'Last Name' or 'Full Name'"
        )

    prev_end = reader.line_num
    for cells in reader:
        line = prev_end + 1
        prev_end = reader.line_num
        result.total_rows += 1
        if not any((c or "").strip() for c in cells):
            result.skipped += 1
            continue
        try:
            record = _row_to_record(cells, mapping, now)
        except ValueError:
            bad = cells[_column_for(mapping, "created_at")]
            result.issues.add_issue(line, f"Unrecognised date '{bad.strip()}'")
            continue
        missing = referral_problems(record)
        if missing:
            result.issues.add_issue(line, describe_missing(missing))
            continue
        result.records.append(record)


def _column_for(mapping: Dict[int, str], target: str) -> int:
    return next(idx for idx, name in mapping.items() if name == target)


def export_row(record: Dict[str, Any],
               columns: Sequence[str] = EXPORT_COLUMNS) -> Dict[str, Any]:
    """Project a stored referral onto export columns, admitted as Yes/No."""
    out = {col: record.get(col) for col in columns}
    if "admitted" in out:
        out["admitted"] = format_yes_no(out["admitted"])
    return out


def write_csv(rows: Iterable[Dict[str, Any]], columns: Sequence[str]) -> str:
    """Render dict rows as CSV text with a header row.

    Embedded delimiters, quotes and newlines are quoted by ``csv``.
    """
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=list(columns), extrasaction="ignore")
    writer.writeheader()
    for row in rows:
        writer.writerow(row)
    return buf.getvalue()
