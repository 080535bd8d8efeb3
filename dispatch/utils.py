import re

_NON_DIGITS = re.compile(r"\D+")

DEFAULT_COUNTRY_CODE = "55"

def normalize_phone(raw: str | None, default_country: str = DEFAULT_COUNTRY_CODE) -> str | None:
    """
    Digits-only international number as the Cloud API expects it ("5511999998888").
    Local numbers (no "+" or "00" prefix, 10-11 digits: area code + subscriber)
    get `default_country` prepended.
    Returns None when the result cannot be a valid E.164 number.
    """
    if not raw:
        return None
    s = str(raw).strip()
    international = s.startswith("+") or s.startswith("00")
    if s.startswith("00"):
        s = s[2:]
    digits = _NON_DIGITS.sub("", s)
    if not international and len(digits) in (10, 11):
        digits = default_country + digits
    if not 10 <= len(digits) <= 15 or digits.startswith("0"):
        return None
    return digits

def mask_phone(phone: str) -> str:
    if len(phone) <= 4:
        return "*" * len(phone)
    return "*" * (len(phone) - 4) + phone[-4:]
