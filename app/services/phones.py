import re


def normalize_phone(raw: str | None) -> str:
    """Приводит номер к E.164, российские 8/7/0 и 10-значные 9xx -> +7."""
    digits = re.sub(r"\D", "", str(raw or ""))
    if not digits:
        return ""
    if len(digits) == 11 and digits[0] in ("8", "7"):
        return "+7" + digits[1:]
    if len(digits) == 11 and digits[0] == "0":
        return "+7" + digits[1:]
    if len(digits) == 10 and digits[0] == "9":
        return "+7" + digits
    return "+" + digits


def parse_admin_phones(raw: str | None) -> list[str]:
    out: list[str] = []
    for chunk in str(raw or "").split(","):
        phone = normalize_phone(chunk)
        if phone and phone not in out:
            out.append(phone)
    return out
