"""
Address Parser — envelope address blocks (Belgian layout)
Turns the lines of one address block into company / street / postal code / city.

Each line is classified on its own (PostalCityLine | StreetLine | PlainLine),
then fields are filled first-match-wins in line order:

    Acme NV              -> PlainLine       -> company_name
    Kerkstraat 12 bus 3  -> StreetLine      -> street
    B-9000 Gent          -> PostalCityLine  -> postal_code, city

This is a best-effort heuristic, not an address grammar.
"""

from __future__ import annotations

import re
from typing import List, Optional

from ..ocr_types import LineKind, ParsedAddress, PlainLine, PostalCityLine, StreetLine

_LETTER = "A-Za-zÀ-ÖØ-öø-ÿ"

# 4-digit postal code followed by a city name; tolerates a "B-" / "BE-" country prefix
POSTAL_CITY_RE = re.compile(
    rf"(?<!\d)(\d{{4}})\s+([{_LETTER}][{_LETTER}'\-. ]*)"
)

# "<street name> <number>[letter] (bus <number>)"
STREET_RE = re.compile(
    rf"^[{_LETTER}][{_LETTER}0-9'\-. ]*?\s+\d+[A-Za-z]?(?:\s*,?\s*(?:bus|bte)\.?\s*\d+[A-Za-z]?)?$",
    re.I,
)


def split_lines(text: Optional[str]) -> List[str]:
    return [ln.strip() for ln in (text or "").splitlines() if ln.strip()]


def classify_line(line: str) -> LineKind:
    """Classify a single trimmed line. Postal/city wins over street."""
    m = POSTAL_CITY_RE.search(line)
    if m:
        city = m.group(2).strip().rstrip("-'. ")
        if city:
            return PostalCityLine(postal_code=m.group(1), city=city)
    if STREET_RE.match(line):
        return StreetLine(street=line)
    return PlainLine(text=line)


def extract_address(text: Optional[str]) -> ParsedAddress:
    lines = split_lines(text)

    company = ""
    street = ""
    city = ""
    postal = ""

    for line in lines:
        kind = classify_line(line)
        if isinstance(kind, PostalCityLine):
            if not postal:
                postal, city = kind.postal_code, kind.city
        elif isinstance(kind, StreetLine):
            if not street:
                street = kind.street
        elif not company:
            company = kind.text

    # Sender/recipient lines with digits ("Garage 2000") end up classified
    # as street; fall back to the first raw line.
    if not company and lines:
        company = lines[0]

    return ParsedAddress(
        company_name=company,
        street=street,
        city=city,
        postal_code=postal,
        raw_lines=tuple(lines),
    )
