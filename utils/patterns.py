"""Pre-compiled regex patterns for the referral intake service.

All patterns are compiled once at module import.

Usage:
    from utils.patterns import US_DATE, WHITESPACE

    if US_DATE.match(text):
        ...
"""

import re

# Whitespace normalization: multiple spaces/tabs/newlines
WHITESPACE = re.compile(r'\s+')

# Date shapes accepted in imported CSV files
# "2024-03-15"
ISO_DATE = re.compile(r'^(\d{4})-(\d{1,2})-(\d{1,2})$')
# "3/15/2024", "03/15/2024"
US_DATE = re.compile(r'^(\d{1,2})/(\d{1,2})/(\d{4})$')
# "2024/03/15"
SLASH_ISO_DATE = re.compile(r'^(\d{4})/(\d{1,2})/(\d{1,2})$')
