# tests/test_address_parser.py
"""
Address block extraction (Belgian envelope layout).

Covers:
  Line classification (each kind in isolation):
  - "9000 Gent" / "B-9000 Gent" -> PostalCityLine
  - "Kerkstraat 12", "Kerkstraat 12 bus 3", "Rue Léopold 3 bte 2" -> StreetLine
  - "Acme NV" -> PlainLine
  - trailing punctuation trimmed from the city

  Block extraction:
  - company / street / postal / city from a 3-line block
  - first match wins per field
  - company falls back to the first raw line
  - empty input
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from storage.ocr_types import ParsedAddress, PlainLine, PostalCityLine, StreetLine
from storage.parsers.address_parser import classify_line, extract_address, split_lines


# ── Line classification ──────────────────────────

class TestClassifyLine:
    def test_postal_city(self):
        assert classify_line("9000 Gent") == PostalCityLine(postal_code="9000", city="Gent")

    def test_postal_with_country_prefix(self):
        assert classify_line("B-9000 Gent") == PostalCityLine(postal_code="9000", city="Gent")

    def test_postal_city_trailing_punctuation_trimmed(self):
        assert classify_line("2000 Antwerpen.") == PostalCityLine(postal_code="2000", city="Antwerpen")

    def test_postal_accented_city(self):
        assert classify_line("4000 Liège") == PostalCityLine(postal_code="4000", city="Liège")

    @pytest.mark.parametrize("line", [
        "Kerkstraat 12",
        "Kerkstraat 12A",
        "Kerkstraat 12 bus 3",
        "Rue Léopold 3 bte 2",
        "Sint-Pietersnieuwstraat 41",
    ])
    def test_street(self, line):
        assert classify_line(line) == StreetLine(street=line)

    @pytest.mark.parametrize("line", ["Acme NV", "T.a.v. Jan Peeters", "PRIOR"])
    def test_plain(self, line):
        assert classify_line(line) == PlainLine(text=line)

    def test_five_digit_number_is_not_postal(self):
        assert not isinstance(classify_line("12345 Gent"), PostalCityLine)


# ── Block extraction ─────────────────────────────

class TestExtractAddress:
    def test_three_line_block(self):
        parsed = extract_address("Acme NV\nKerkstraat 12\n9000 Gent")
        assert parsed.extracted_dict() == {
            "companyName": "Acme NV",
            "street": "Kerkstraat 12",
            "city": "Gent",
            "postalCode": "9000",
        }
        assert parsed.raw_lines == ("Acme NV", "Kerkstraat 12", "9000 Gent")

    def test_blank_lines_and_padding_ignored(self):
        parsed = extract_address("\n  Acme NV  \n\n Kerkstraat 12\n9000 Gent \n")
        assert parsed.company_name == "Acme NV"
        assert parsed.raw_lines == ("Acme NV", "Kerkstraat 12", "9000 Gent")

    def test_first_match_wins(self):
        parsed = extract_address(
            "Acme NV\nT.a.v. boekhouding\nKerkstraat 12\nMeir 5\n9000 Gent\n2000 Antwerpen"
        )
        assert parsed.company_name == "Acme NV"
        assert parsed.street == "Kerkstraat 12"
        assert (parsed.postal_code, parsed.city) == ("9000", "Gent")

    def test_company_falls_back_to_first_raw_line(self):
        parsed = extract_address("Kerkstraat 12\n9000 Gent")
        assert parsed.company_name == "Kerkstraat 12"
        assert parsed.street == "Kerkstraat 12"
        assert parsed.city == "Gent"

    def test_postal_only_block_uses_postal_line_as_company(self):
        parsed = extract_address("9000 Gent")
        assert parsed.company_name == "9000 Gent"
        assert parsed.city == "Gent"

    def test_empty(self):
        assert extract_address("") == ParsedAddress()
        assert extract_address(None).is_noise

    def test_split_lines(self):
        assert split_lines(" a \n\n b\r\nc ") == ["a", "b", "c"]
