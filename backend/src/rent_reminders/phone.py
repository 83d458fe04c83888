from __future__ import annotations

import re

_SEPARATORS = re.compile(r"[\s\-().]")
_NON_DIGITS = re.compile(r"\D")
_E164 = re.compile(r"^\+[1-9]\d{9,14}$")
PH_COUNTRY_CODE = "63"


def normalize_phone(raw: str | None) -> str | None:
    """Turn free-form phone input into E.164 (``+<country><national>``).

    Numbers without a recognisable country prefix are treated as Philippine:
    ``09XXXXXXXXX`` and ``9XXXXXXXXX`` both become ``+639XXXXXXXXX``. An
    explicit ``+`` keeps the caller's country code. Anything that does not
    end up as ``+`` followed by 10-15 digits is rejected.
    """
    if not raw:
        return None
    compact = _SEPARATORS.sub("", raw)
    has_plus = compact.startswith("+")
    digits = _NON_DIGITS.sub("", compact)
    if not digits:
        return None

    if digits.startswith(PH_COUNTRY_CODE) and len(digits) >= 12:
        candidate = "+" + digits
    elif digits.startswith("0") and len(digits) >= 11:
        candidate = "+" + PH_COUNTRY_CODE + digits[1:]
    elif len(digits) == 10 and digits.startswith("9"):
        candidate = "+" + PH_COUNTRY_CODE + digits
    elif has_plus and len(digits) >= 10:
        candidate = "+" + digits
    else:
        candidate = "+" + PH_COUNTRY_CODE + digits

    return candidate if _E164.match(candidate) else None
