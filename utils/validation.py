"""Data validation utilities for referral records.

Provides reusable functions for:
- Required-field checks shared by the intake form, the edit path and CSV import
- Collecting per-row import issues with their line numbers
"""

from typing import Any, Dict, List, Mapping

from utils.config import KnownValues

REQUIRED_REFERRAL_FIELDS = ("first_name", "last_name", "lead_source")
REQUIRED_CONTACT_FIELDS = ("referral_partner", "referral_rep", "referral_contact_info")

FIELD_LABELS = {
    "first_name": "first name",
    "last_name": "last name",
    "lead_source": "lead source",
    "outreach_rep": "outreach rep",
    "referral_partner": "referral partner",
    "referral_rep": "referral rep",
    "referral_contact_info": "contact info",
}


def missing_fields(record: Mapping[str, Any], fields) -> List[str]:
    """Return the names in *fields* whose value is missing or blank."""
    missing = []
    for name in fields:
        value = record.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    return missing


def referral_problems(record: Mapping[str, Any]) -> List[str]:
    """Return the fields a referral still needs before it can be stored.

    Names and lead source are always required; an Outreach lead also
    needs the rep who brought it in.
    """
    missing = missing_fields(record, REQUIRED_REFERRAL_FIELDS)
    lead = record.get("lead_source")
    if lead and str(lead).strip().lower() == KnownValues.OUTREACH.lower():
        missing += missing_fields(record, ("outreach_rep",))
    return missing


def describe_missing(missing: List[str]) -> str:
    """Human-readable message naming missing fields.

    Example:
        ["first_name", "lead_source"] -> "Missing required fields: first name, lead source"
    """
    labels = [FIELD_LABELS.get(m, m.replace("_", " ")) for m in missing]
    return "Missing required fields: " + ", ".join(labels)


class ValidationIssue:
    """A single rejected input row."""

    def __init__(self, line: int, reason: str):
        """Initialize a validation issue.

        Args:
            line: 1-based physical line number in the source file
            reason: Human-readable description of the problem
        """
        self.line = line
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"line": self.line, "reason": self.reason}

    def __repr__(self) -> str:
        return f"ValidationIssue(line={self.line}, reason={self.reason!r})"


class ValidationResult:
    """Collects rejected rows while an import file is parsed."""

    def __init__(self):
        self.issues: List[ValidationIssue] = []

    def add_issue(self, line: int, reason: str) -> None:
        self.issues.append(ValidationIssue(line, reason))

    def error_count(self) -> int:
        return len(self.issues)

    def is_valid(self) -> bool:
        """True when no row was rejected."""
        return not self.issues

    def to_list(self) -> List[Dict[str, Any]]:
        return [i.to_dict() for i in self.issues]
