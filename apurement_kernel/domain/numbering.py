"""
Declaration number normalization.

SA and EA numbers are a two-letter prefix followed by six digits.  Users
type either the digits alone or the full number in any case:
``"250001"``, ``" sa250001 "`` and ``"SA250001"`` all normalize to
``"SA250001"``.
"""

import re

from apurement_kernel.exceptions import InvalidDeclarationNumberError

SA_PREFIX = "SA"
EA_PREFIX = "EA"

_DIGITS = re.compile(r"^\d{6}$")


def normalize_declaration_number(prefix: str, value: object) -> str:
    """
    Normalize a declaration number to ``prefix`` + 6 digits.

    Raises:
        InvalidDeclarationNumberError: If the value is empty or does not
            reduce to exactly six digits.
    """
    if not isinstance(value, str) or not value.strip():
        raise InvalidDeclarationNumberError(prefix, value)

    digits = value.strip().upper()
    if digits.startswith(prefix):
        digits = digits[len(prefix):]

    if not _DIGITS.match(digits):
        raise InvalidDeclarationNumberError(prefix, value)

    return f"{prefix}{digits}"


def normalize_sa_number(value: object) -> str:
    return normalize_declaration_number(SA_PREFIX, value)


def normalize_ea_number(value: object) -> str:
    return normalize_declaration_number(EA_PREFIX, value)
