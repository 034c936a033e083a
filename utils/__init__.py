"""Shared utilities for the referral intake service."""

# Common utilities
from utils.common import format_bytes, elapsed_ms, to_utc_iso, utc_now

# Pattern definitions
from utils.patterns import WHITESPACE, ISO_DATE, US_DATE, SLASH_ISO_DATE

# String utilities
from utils.strings import (
    normalize_whitespace,
    clean_optional,
    parse_bool,
    split_full_name,
    title_case,
)

# Database utilities
from utils.database import (
    init_pragmas,
    create_schema,
    batch_write,
    BatchWriteResult,
    get_table_count,
    table_exists,
    query_to_dicts,
)

# Validation utilities
from utils.validation import (
    ValidationIssue,
    ValidationResult,
    missing_fields,
    referral_problems,
    describe_missing,
)

# Output formatting
from utils.formatting import format_percent, format_count, format_yes_no

# Configuration
from utils.config import (
    Config,
    DatabaseConfig,
    AppConfig,
    KnownValues,
    ColumnMapping,
)

# CSV import/export
from utils.csv_io import (
    EXPORT_COLUMNS,
    ParsedImport,
    parse_referral_csv,
    parse_import_date,
    export_row,
    write_csv,
)

# Report computations
from utils.aggregation import (
    DIMENSIONS,
    overview,
    group_by,
    sort_rows,
    quarter_label,
    quarter_breakdown,
    conversion_rate,
)

__all__ = [
    # Common
    "format_bytes",
    "elapsed_ms",
    "to_utc_iso",
    "utc_now",
    # Patterns
    "WHITESPACE",
    "ISO_DATE",
    "US_DATE",
    "SLASH_ISO_DATE",
    # Strings
    "normalize_whitespace",
    "clean_optional",
    "parse_bool",
    "split_full_name",
    "title_case",
    # Database
    "init_pragmas",
    "create_schema",
    "batch_write",
    "BatchWriteResult",
    "get_table_count",
    "table_exists",
    "query_to_dicts",
    # Validation
    "ValidationIssue",
    "ValidationResult",
    "missing_fields",
    "referral_problems",
    "describe_missing",
    # Formatting
    "format_percent",
    "format_count",
    "format_yes_no",
    # Config
    "Config",
    "DatabaseConfig",
    "AppConfig",
    "KnownValues",
    "ColumnMapping",
    # CSV
    "EXPORT_COLUMNS",
    "ParsedImport",
    "parse_referral_csv",
    "parse_import_date",
    "export_row",
    "write_csv",
    # Aggregation
    "DIMENSIONS",
    "overview",
    "group_by",
    "sort_rows",
    "quarter_label",
    "quarter_breakdown",
    "conversion_rate",
]
