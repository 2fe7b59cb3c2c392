"""Human-readable reference codes with a checksum character.

Format: ``{PREFIX}-{YYMMDD}-{XXXX}{C}``, e.g. ``BKG-261016-K7QM4``.
The random part avoids visually ambiguous characters (O, I, 0, 1) and the
trailing character is the base-36 digit of the character-code sum mod 36.
"""

import datetime as dt
import re
import secrets
import string

BOOKING_PREFIX = "BKG"
PAYMENT_PREFIX = "PAY"
REFUND_PREFIX = "RFD"

VALID_PREFIXES = frozenset({BOOKING_PREFIX, PAYMENT_PREFIX, REFUND_PREFIX})

CHARSET = "".join(c for c in string.ascii_uppercase + string.digits if c not in "OI10")
RANDOM_LENGTH = 4

_BASE36 = string.digits + string.ascii_uppercase
_REFERENCE_RE = re.compile(r"^([A-Z]{3})-(\d{6})-([A-Z0-9]{4})([A-Z0-9])$")


def compute_checksum(base: str) -> str:
    """Compute the checksum character for a reference base string.

    Args:
        base: Prefix, date part and random part concatenated without dashes

    Returns:
        Single base-36 character
    """
    return _BASE36[sum(ord(c) for c in base) % 36]


def generate_reference(prefix: str, today: dt.date | None = None) -> str:
    """Generate a new reference code.

    Args:
        prefix: One of VALID_PREFIXES
        today: Date used for the date part (defaults to today in UTC)

    Returns:
        Reference code string

    Raises:
        ValueError: If the prefix is not recognised
    """
    if prefix not in VALID_PREFIXES:
        raise ValueError(f"Invalid reference prefix: {prefix}")

    day = today or dt.datetime.now(dt.UTC).date()
    date_part = day.strftime("%y%m%d")
    random_part = "".join(secrets.choice(CHARSET) for _ in range(RANDOM_LENGTH))
    checksum = compute_checksum(f"{prefix}{date_part}{random_part}")

    return f"{prefix}-{date_part}-{random_part}{checksum}"


def validate_reference(reference: str) -> tuple[bool, str]:
    """Validate a reference code's format and checksum.

    Args:
        reference: Reference code to check

    Returns:
        Tuple of (is_valid, error_message)
    """
    match = _REFERENCE_RE.match(reference)
    if not match:
        return False, "Invalid format"

    prefix, date_part, random_part, checksum = match.groups()

    if prefix not in VALID_PREFIXES:
        return False, "Invalid prefix"
    if any(c not in CHARSET for c in random_part):
        return False, "Invalid random part"
    if compute_checksum(f"{prefix}{date_part}{random_part}") != checksum:
        return False, "Checksum validation failed"

    return True, ""
