"""Configuration management utilities for the referral intake service.

Provides reusable pieces for:
- A shared base for configuration objects
- Environment-driven application settings
- Known choice lists used by the intake form and validation
- CSV header alias mapping for bulk import
"""

import os as _os
import re
from pathlib import Path
from typing import Any, Dict, Optional


class Config:
    """Base configuration class for organizing application settings."""

    def __init__(self):
        """Initialize configuration with default values."""
        pass

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary.

        Returns:
            Dictionary of all public config attributes
        """
        return {k: v for k, v in self.__dict__.items() if not k.startswith("_")}


class DatabaseConfig(Config):
    """Configuration for database operations."""

    def __init__(self):
        super().__init__()
        self.db_path = Path("referrals.sqlite")
        self.wal_mode = True
        self.synchronous = "NORMAL"
        self.busy_timeout_ms = 5000
        self.batch_size = 500


class KnownValues:
    """Choice lists offered by the intake and edit forms."""

    LEAD_SOURCES = ("Insurance", "Kaiser", "Outreach", "Direct")

    # Level of care
    PROGRAMS = ("DTX", "RTC", "PHP", "IOP")

    # Destination facilities
    DESTINATIONS = ("SBR", "Cov hills")

    # Lead source that requires an outreach rep
    OUTREACH = "Outreach"

    DEFAULT_LEAD_SOURCE = "Insurance"

    @classmethod
    def canonical_lead_source(cls, value: str) -> Optional[str]:
        """Return the known lead source matching *value* case-insensitively."""
        return _match_choice(value, cls.LEAD_SOURCES)

    @classmethod
    def canonical_program(cls, value: str) -> Optional[str]:
        """Return the known program matching *value* case-insensitively."""
        return _match_choice(value, cls.PROGRAMS)

    @classmethod
    def canonical_destination(cls, value: str) -> Optional[str]:
        """Return the known destination matching *value* case-insensitively."""
        return _match_choice(value, cls.DESTINATIONS)


def _match_choice(value: str, choices: tuple) -> Optional[str]:
    if not value:
        return None
    needle = value.strip().lower()
    for choice in choices:
        if choice.lower() == needle:
            return choice
    return None


class ColumnMapping:
    """Maps free-form CSV header names to referral field names."""

    # Keys are normalized headers (see normalize_header)
    REFERRAL_ALIASES = {
        "firstname": "first_name",
        "first": "first_name",
        "fname": "first_name",
        "givenname": "first_name",
        "lastname": "last_name",
        "last": "last_name",
        "lname": "last_name",
        "surname": "last_name",
        "familyname": "last_name",
        "name": "full_name",
        "fullname": "full_name",
        "patientname": "full_name",
        "clientname": "full_name",
        "leadsource": "lead_source",
        "lead": "lead_source",
        "source": "lead_source",
        "outreachrep": "outreach_rep",
        "rep": "outreach_rep",
        "assignedrep": "outreach_rep",
        "referralsource": "referral_source",
        "referredby": "referral_source",
        "referrer": "referral_source",
        "referralout": "referral_out",
        "referredout": "referral_out",
        "referredto": "referral_out",
        "insurancecompany": "insurance_company",
        "insurance": "insurance_company",
        "payor": "insurance_company",
        "payer": "insurance_company",
        "program": "program",
        "levelofcare": "program",
        "loc": "program",
        "referralsentto": "referral_sent_to",
        "sentto": "referral_sent_to",
        "destination": "referral_sent_to",
        "facility": "referral_sent_to",
        "admitted": "admitted",
        "admit": "admitted",
        "admissionstatus": "admitted",
        "status": "admitted",
        "date": "created_at",
        "createdat": "created_at",
        "created": "created_at",
        "referraldate": "created_at",
        "datecreated": "created_at",
    }

    @classmethod
    def normalize_header(cls, header: str) -> str:
        """Normalize a column header string.

        Lowercases and drops whitespace, underscores, hyphens and
        punctuation so "First Name", "first_name" and "FIRST-NAME" agree.
        """
        if not header:
            return ""
        return re.sub(r"[^a-z0-9]", "", str(header).lower())

    @classmethod
    def field_for_header(cls, header: str) -> Optional[str]:
        """Return the referral field for a raw CSV header, or None."""
        return cls.REFERRAL_ALIASES.get(cls.normalize_header(header))


class AppConfig(Config):
    """Application-level configuration loaded from environment variables.

    All env vars have defaults so the service starts without any setup.

    Environment variables:
        APP_DB_PATH: Path to the SQLite database file (default: referrals.sqlite)
        APP_PORT: API server port (default: 8000)
        APP_HOST: API server bind address (default: 127.0.0.1)
        APP_LOG_FORMAT: Logging format, "text" or "json" (default: text)
        APP_CORS_ORIGINS: Comma-separated allowed origins (default: *)
        SESSION_TTL_HOURS: Lifetime of a sign-in session (default: 12)
        IMPORT_BATCH_SIZE: Rows per write batch during CSV import (default: 500)
        IMPORT_MAX_BYTES: Largest accepted CSV upload (default: 5 MB)
        RATE_LIMIT_LOGIN: Max login attempts per minute per IP (default: 10)
        RATE_LIMIT_DEFAULT: Max requests per minute for other endpoints (default: 300)
        TRUSTED_PROXIES: Comma-separated proxy IPs to trust for forwarded IPs
        APP_ADMIN_EMAIL / APP_ADMIN_PASSWORD: account created at startup if missing
    """

    def __init__(self) -> None:
        super().__init__()
        self.db_path = Path(_os.getenv("APP_DB_PATH", "referrals.sqlite"))
        self.api_port = int(_os.getenv("APP_PORT", "8000"))
        self.api_host = _os.getenv("APP_HOST", "127.0.0.1")
        self.log_format = _os.getenv("APP_LOG_FORMAT", "text")
        raw_origins = _os.getenv("APP_CORS_ORIGINS", "*")
        self.cors_origins: list[str] = (
            ["*"] if raw_origins == "*"
            else [o.strip() for o in raw_origins.split(",") if o.strip()]
        )
        self.session_ttl_hours = float(_os.getenv("SESSION_TTL_HOURS", "12"))
        self.import_batch_size = int(
            _os.getenv("IMPORT_BATCH_SIZE", str(DatabaseConfig().batch_size))
        )
        self.import_max_bytes = int(_os.getenv("IMPORT_MAX_BYTES", str(5 * 1024 * 1024)))
        self.rate_limit_login = int(_os.getenv("RATE_LIMIT_LOGIN", "10"))
        self.rate_limit_default = int(_os.getenv("RATE_LIMIT_DEFAULT", "300"))
        raw_proxies = _os.getenv("TRUSTED_PROXIES", "")
        self.trusted_proxies: set[str] = (
            {p.strip() for p in raw_proxies.split(",") if p.strip()}
        )
        self.admin_email = _os.getenv("APP_ADMIN_EMAIL", "")
        self._admin_password = _os.getenv("APP_ADMIN_PASSWORD", "")

    @property
    def admin_password(self) -> str:
        # Kept out of to_dict() so the startup log never carries it
        return self._admin_password

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create an AppConfig instance populated from environment variables."""
        return cls()
