"""
Tests for heuristic field mapping.
"""

from certmap.pipeline import field_mapper
from certmap.pipeline.field_mapper import (
    HEURISTICS,
    average_item_height,
    find_source,
    map_extraction,
    split_lines,
)
from certmap.schemas.contracts import Extraction
from conftest import make_extraction


class TestMapExtraction:
    """End-to-end mapping of a hand-built extraction."""

    def test_title_is_tallest_fragment(self, hackathon_extraction):
        mapping = map_extraction(hackathon_extraction)
        assert mapping.title.value == "Hackathon Winner"
        assert mapping.title.confidence == 1.0
        assert mapping.title.sources[0].page == 1
        assert mapping.title.sources[0].item_index == 0

    def test_issuer_from_label(self, hackathon_extraction):
        mapping = map_extraction(hackathon_extraction)
        assert mapping.issuer.value == "Open Source Guild"
        assert mapping.issuer.confidence == 0.75
        assert mapping.issuer.sources[0].item_index == 1

    def test_links_deduplicated_after_cleanup(self, hackathon_extraction):
        mapping = map_extraction(hackathon_extraction)
        assert mapping.useful_links.value == ["https://guild.example/cert/42"]
        assert mapping.useful_links.confidence == 0.9
        assert mapping.useful_links.sources[0].item_index == 5

    def test_two_dates_become_start_and_end(self, hackathon_extraction):
        mapping = map_extraction(hackathon_extraction)
        assert mapping.start_date.value == "12.03.2024"
        assert mapping.end_date.value == "14.03.2024"
        assert mapping.start_date.confidence == 0.6
        assert mapping.issued_date is None

    def test_recipient_name(self, hackathon_extraction):
        mapping = map_extraction(hackathon_extraction)
        assert mapping.recipient.value == "Jane Doe"
        assert mapping.recipient.confidence == 0.75
        assert mapping.recipient_address is None

    def test_skills_split_on_separators(self, hackathon_extraction):
        mapping = map_extraction(hackathon_extraction)
        assert mapping.skills.value == ["Python", "Rust", "Teamwork"]
        assert mapping.skills.confidence == 0.6

    def test_description_from_following_lines(self, hackathon_extraction):
        mapping = map_extraction(hackathon_extraction)
        assert mapping.description.value.startswith("Issued by: Open Source Guild Awarded to Jane Doe")
        assert mapping.description.confidence == 0.5

    def test_category(self, hackathon_extraction):
        mapping = map_extraction(hackathon_extraction)
        assert mapping.category.value == "Hackathon"
        assert mapping.category.confidence == 0.75
        assert mapping.category.sources[0].text == "Hackathon Winner"

    def test_deterministic(self, hackathon_extraction):
        assert map_extraction(hackathon_extraction) == map_extraction(hackathon_extraction)


class TestDates:

    def test_single_iso_date_is_issued_date(self):
        extraction = make_extraction([("Certificate", 20), ("Issued on 2024-03-12", 10)])
        mapping = map_extraction(extraction)
        assert mapping.issued_date.value == "2024-03-12"
        assert mapping.issued_date.confidence == 0.8
        assert mapping.start_date is None
        assert mapping.end_date is None

    def test_order_of_appearance_not_chronological(self):
        extraction = make_extraction([
            ("Course record", 20),
            ("Valid until 2025-06-30", 10),
            ("Started 2024-01-15", 10),
        ])
        mapping = map_extraction(extraction)
        assert mapping.start_date.value == "2025-06-30"
        assert mapping.end_date.value == "2024-01-15"


class TestRecipient:

    def test_wallet_address_wins_over_name(self):
        address = "0x" + "aB" * 20
        extraction = make_extraction([
            ("Internship Certificate", 20),
            ("Presented to Max Mustermann", 10),
            (f"Wallet {address}", 10),
        ])
        mapping = map_extraction(extraction)
        assert mapping.recipient_address.value == address
        assert mapping.recipient_address.confidence == 0.98
        assert mapping.recipient is None

    def test_overlong_hex_is_not_an_address(self):
        extraction = make_extraction([("Title here", 20), ("Id 0x" + "a" * 41, 10)])
        assert map_extraction(extraction).recipient_address is None


class TestSkills:

    def test_skills_on_next_line(self):
        extraction = make_extraction([
            ("Workshop Certificate", 20),
            ("Skills:", 10),
            ("SQL, Docker", 10),
        ])
        mapping = map_extraction(extraction)
        assert mapping.skills.value == ["SQL", "Docker"]
        assert mapping.skills.confidence == 0.55


class TestIssuerFallback:

    def test_second_tallest_fragment(self):
        extraction = make_extraction([
            ("Volunteer Award", 24),
            ("City Food Bank", 16),
            ("Thank you", 8),
        ])
        mapping = map_extraction(extraction)
        assert mapping.issuer.value == "City Food Bank"
        assert mapping.issuer.sources[0].item_index == 1
        assert mapping.issuer.confidence == 0.95


class TestMalformedInput:
    """Mapping never raises; it degrades to a partial or empty mapping."""

    def test_none(self):
        mapping = map_extraction(None)
        # Category always has a value
        assert set(mapping.present()) == {"category"}
        assert mapping.category.value == "Other"
        assert mapping.category.confidence == 0.35

    def test_empty_extraction(self):
        mapping = map_extraction(Extraction())
        assert mapping.title is None
        assert mapping.category.value == "Other"

    def test_invalid_pages_keep_plain_text(self):
        mapping = map_extraction({"pages": "junk", "plainText": "Hackathon on 2024-01-01"})
        assert mapping.category.value == "Hackathon"
        assert mapping.issued_date.value == "2024-01-01"
        assert mapping.issued_date.sources == []

    def test_wire_form_dict(self, hackathon_extraction):
        raw = hackathon_extraction.model_dump(mode="json", by_alias=True)
        assert map_extraction(raw) == map_extraction(hackathon_extraction)

    def test_not_a_mapping_at_all(self):
        assert map_extraction(["not", "an", "extraction"]).title is None

    def test_failing_heuristic_is_omitted(self, hackathon_extraction, monkeypatch):
        def broken(ctx):
            raise ValueError("boom")

        monkeypatch.setattr(field_mapper, "HEURISTICS", [broken] + HEURISTICS[1:])
        mapping = map_extraction(hackathon_extraction)
        assert mapping.title is None
        assert mapping.issuer.value == "Open Source Guild"


class TestHelpers:

    def test_find_source_case_insensitive_first_hit(self, hackathon_extraction):
        source = find_source(hackathon_extraction, "JANE DOE")
        assert source.item_index == 2
        assert source.text == "Awarded to Jane Doe"
        assert source.bbox.h == 12

    def test_find_source_missing(self, hackathon_extraction):
        assert find_source(hackathon_extraction, "nowhere") is None
        assert find_source(hackathon_extraction, "") is None

    def test_split_lines_handles_page_breaks(self):
        assert split_lines("one\n\f\ntwo\r\n  \nthree ") == ["one", "two", "three"]

    def test_average_height_default(self):
        assert average_item_height(Extraction()) == 10.0
