"""
Pydantic request/response models for the API.

Request models strip free-text fields and store blanks as None.  Response
models mirror the stored rows; optional fields default to None so rows with
NULL columns serialize cleanly.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from utils.config import KnownValues
from utils.strings import clean_optional
from utils.validation import (
    REQUIRED_CONTACT_FIELDS,
    describe_missing,
    missing_fields,
    referral_problems,
)

_REFERRAL_TEXT_FIELDS = (
    "first_name", "last_name", "lead_source", "outreach_rep",
    "referral_source", "referral_out", "insurance_company", "program",
    "referral_sent_to",
)

_CONTACT_TEXT_FIELDS = (
    "referral_partner", "referral_rep", "referral_contact_info", "referent_email",
)


def _choice(value: str | None, canonical, choices: tuple, label: str) -> str | None:
    if value is None:
        return None
    match = canonical(value)
    if match is None:
        raise ValueError(f"{label} must be one of: {', '.join(choices)}")
    return match


# ── Referral models ───────────────────────────────────────────────────────────

class _ReferralFields(BaseModel):
    """Editable referral fields shared by the create and update bodies."""
    first_name: str | None = Field(None, description="Client first name", examples=["Maria"])
    last_name: str | None = Field(None, description="Client last name", examples=["Lopez"])
    lead_source: str | None = Field(None, description="Insurance, Kaiser, Outreach or Direct", examples=["Outreach"])
    outreach_rep: str | None = Field(None, description="Rep credited with the lead; required for Outreach", examples=["Dana"])
    referral_source: str | None = Field(None, description="Who referred the client to us", examples=["St. Mary's ER"])
    referral_out: str | None = Field(None, description="Where we referred the client out to", examples=["Harbor Recovery"])
    insurance_company: str | None = Field(None, description="Payor", examples=["Aetna"])
    program: str | None = Field(None, description="Level of care: DTX, RTC, PHP or IOP", examples=["RTC"])
    referral_sent_to: str | None = Field(None, description="Destination facility: SBR or Cov hills", examples=["SBR"])

    @field_validator(*_REFERRAL_TEXT_FIELDS, mode="before")
    @classmethod
    def _strip_text(cls, v: Any) -> Any:
        if v is None or isinstance(v, str):
            return clean_optional(v)
        return v

    @field_validator("lead_source")
    @classmethod
    def _known_lead_source(cls, v: str | None) -> str | None:
        return _choice(v, KnownValues.canonical_lead_source, KnownValues.LEAD_SOURCES, "lead_source")

    @field_validator("program")
    @classmethod
    def _known_program(cls, v: str | None) -> str | None:
        return _choice(v, KnownValues.canonical_program, KnownValues.PROGRAMS, "program")

    @field_validator("referral_sent_to")
    @classmethod
    def _known_destination(cls, v: str | None) -> str | None:
        return _choice(v, KnownValues.canonical_destination, KnownValues.DESTINATIONS, "referral_sent_to")


class ReferralCreate(_ReferralFields):
    """Intake form submission."""
    admitted: bool = Field(False, description="Whether the client was admitted")

    @model_validator(mode="after")
    def _required(self) -> "ReferralCreate":
        missing = referral_problems(self.model_dump())
        if missing:
            raise ValueError(describe_missing(missing))
        return self


class ReferralUpdate(_ReferralFields):
    """Partial update; only the fields sent are changed."""
    admitted: bool | None = Field(None, description="Whether the client was admitted")


class ReferralOut(BaseModel):
    """A stored referral record."""
    id: int = Field(..., description="Record ID", examples=[42])
    first_name: str = Field(..., examples=["Maria"])
    last_name: str = Field(..., examples=["Lopez"])
    lead_source: str = Field(..., examples=["Outreach"])
    outreach_rep: str | None = None
    referral_source: str | None = None
    referral_out: str | None = None
    insurance_company: str | None = None
    program: str | None = None
    referral_sent_to: str | None = None
    admitted: bool = False
    created_at: str = Field(..., description="UTC timestamp assigned on insert", examples=["2024-05-02T14:03:11"])
    created_by: str = Field(..., description="Email of the submitting user", examples=["intake@example.org"])
    updated_at: str | None = Field(None, description="UTC timestamp of the last edit")
    updated_by: str | None = Field(None, description="Email of the last editor")


class ReferralPage(BaseModel):
    """One page of the admin table."""
    total: int = Field(..., description="Total matching rows (before pagination)", examples=[312])
    limit: int = Field(..., description="Page size used", examples=[25])
    offset: int = Field(..., description="Offset of this page", examples=[0])
    page: int = Field(..., description="1-based page number", examples=[1])
    page_count: int = Field(..., description="Number of pages (at least 1)", examples=[13])
    has_next: bool = Field(..., description="True if a later page exists")
    has_prev: bool = Field(..., description="True if an earlier page exists")
    items: list[ReferralOut] = Field(..., description="Referrals on this page")


# ── Import models ─────────────────────────────────────────────────────────────

class ImportIssue(BaseModel):
    """A rejected CSV row."""
    line: int = Field(..., description="Line number in the file (header is line 1)", examples=[7])
    reason: str = Field(..., description="Why the row was rejected", examples=["Missing required fields: last name"])


class ImportResponse(BaseModel):
    """Outcome of a bulk CSV import."""
    total_rows: int = Field(..., description="Data rows read (excluding the header)")
    imported: int = Field(..., description="Rows written")
    failed: int = Field(..., description="Rows in batches that failed to write")
    skipped: int = Field(..., description="Blank rows skipped")
    errors: list[ImportIssue] = Field(..., description="Rows rejected before writing")
    unmapped_headers: list[str] = Field(..., description="Headers that matched no field")


# ── Referent contact models ───────────────────────────────────────────────────

class _ContactFields(BaseModel):
    referral_partner: str | None = Field(None, description="Partner organization", examples=["Harbor Recovery"])
    referral_rep: str | None = Field(None, description="Person at the partner", examples=["Sam Ortiz"])
    referral_contact_info: str | None = Field(None, description="Phone or other contact details", examples=["555-0142"])
    referent_email: str | None = Field(None, description="Optional email", examples=["sam@harbor.example"])

    @field_validator(*_CONTACT_TEXT_FIELDS, mode="before")
    @classmethod
    def _strip_text(cls, v: Any) -> Any:
        if v is None or isinstance(v, str):
            return clean_optional(v)
        return v


class ContactCreate(_ContactFields):
    """New referent contact; partner, rep and contact info are required."""

    @model_validator(mode="after")
    def _required(self) -> "ContactCreate":
        missing = missing_fields(self.model_dump(), REQUIRED_CONTACT_FIELDS)
        if missing:
            raise ValueError(describe_missing(missing))
        return self


class ContactUpdate(_ContactFields):
    """Partial update of a referent contact."""


class ContactOut(BaseModel):
    """A stored referent contact."""
    id: int = Field(..., examples=[3])
    referral_partner: str
    referral_rep: str
    referral_contact_info: str
    referent_email: str | None = None
    created_at: str
    created_by: str
    updated_at: str | None = None


# ── Auth models ───────────────────────────────────────────────────────────────

class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, description="Account email", examples=["intake@example.org"])
    password: str = Field(..., min_length=1, description="Account password")


class TokenResponse(BaseModel):
    """Issued bearer token."""
    access_token: str = Field(..., description="Send as 'Authorization: Bearer <token>'")
    token_type: str = Field("bearer", examples=["bearer"])
    expires_at: str = Field(..., description="UTC expiry timestamp", examples=["2024-05-03T02:03:11"])


class UserOut(BaseModel):
    id: int = Field(..., examples=[1])
    email: str = Field(..., examples=["intake@example.org"])


# ── Metrics models ────────────────────────────────────────────────────────────

class OverviewOut(BaseModel):
    """Headline numbers for the filtered set."""
    total: int = Field(..., description="Referrals in the filtered set", examples=[120])
    admitted: int = Field(..., description="Admitted referrals", examples=[42])
    conversion_rate: float = Field(..., description="Admitted / total in percent, 1 decimal", examples=[35.0])


class MetricsRow(BaseModel):
    """One group of a breakdown."""
    group: str = Field(..., description="Group value (first spelling seen)", examples=["Kaiser"])
    total: int = Field(..., examples=[30])
    admitted: int = Field(..., examples=[12])
    conversion_rate: float = Field(..., description="Percent, 1 decimal", examples=[40.0])
    pct_of_total: float = Field(..., description="Share of the filtered total in percent", examples=[25.0])


class QuarterRow(MetricsRow):
    """A calendar quarter with changes against the previous quarter present."""
    total_delta: int | None = Field(None, examples=[4])
    admitted_delta: int | None = Field(None, examples=[-1])
    conversion_rate_delta: float | None = Field(None, description="Percentage points", examples=[-5.2])
    total_change_pct: float | None = Field(None, description="Percent change in total", examples=[12.5])


class MetricsResponse(BaseModel):
    group_by: str = Field(..., description="Dimension grouped on", examples=["lead_source"])
    sort_by: str = Field(..., examples=["total"])
    sort_dir: str = Field(..., examples=["desc"])
    overview: OverviewOut
    rows: list[MetricsRow]


class MetricsSummary(BaseModel):
    """Overview plus the four standard breakdowns."""
    overview: OverviewOut
    lead_source: list[MetricsRow]
    referral_source: list[MetricsRow]
    referral_sent_to: list[MetricsRow]
    referral_out: list[MetricsRow]


class QuarterResponse(BaseModel):
    overview: OverviewOut
    rows: list[QuarterRow]


# ── Reference data models ─────────────────────────────────────────────────────

class ReferenceOptions(BaseModel):
    """Fixed choice lists offered by the intake and edit forms."""
    lead_sources: list[str] = Field(..., examples=[list(KnownValues.LEAD_SOURCES)])
    programs: list[str] = Field(..., examples=[list(KnownValues.PROGRAMS)])
    destinations: list[str] = Field(..., examples=[list(KnownValues.DESTINATIONS)])
    default_lead_source: str = Field(..., examples=[KnownValues.DEFAULT_LEAD_SOURCE])


class ValueCount(BaseModel):
    value: str = Field(..., examples=["St. Mary's ER"])
    count: int = Field(..., examples=[14])


# ── Error model ───────────────────────────────────────────────────────────────

class ErrorResponse(BaseModel):
    """Standard error response body."""
    error: str = Field(..., description="Short error category", examples=["Bad request"])
    detail: str | None = Field(None, description="Extended error detail")
    status_code: int = Field(..., ge=400, le=599, description="HTTP status code", examples=[400])
    errors: list[dict[str, Any]] | None = Field(None, description="Field-level problems, on 422 responses only")
