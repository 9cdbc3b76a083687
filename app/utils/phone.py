import re


def normalize_phone(phone: str) -> str:
    """Normalize a US phone number to E.164 (+1XXXXXXXXXX).

    Non-digit characters are stripped. Ten digits get a +1 prefix, eleven
    digits starting with 1 get a +. Anything else is returned with a leading
    + so the SMS provider can reject it.
    """
    digits = re.sub(r"\D", "", phone or "")
    if not digits:
        raise ValueError("phone has no digits")
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    return f"+{digits}"


__all__ = ["normalize_phone"]
