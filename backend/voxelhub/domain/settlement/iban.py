"""IBAN normalization and mod-97 check."""
import re

_IBAN_SHAPE = re.compile(r"^[A-Z]{2}\d{2}[A-Z0-9]+$")


def normalize_iban(iban: str) -> str:
    return re.sub(r"\s+", "", iban or "").upper()


def is_valid_iban(iban: str) -> bool:
    clean = normalize_iban(iban)
    if not 15 <= len(clean) <= 34 or not _IBAN_SHAPE.match(clean):
        return False
    rearranged = clean[4:] + clean[:4]
    # A=10 ... Z=35
    numeric = "".join(str(int(ch, 36)) for ch in rearranged)
    return int(numeric) % 97 == 1
