"""Tests for the record normalizer (text cleaning, CVE/date lookup)."""

from __future__ import annotations

import logging

from ingestion import clean_text, find_cve, find_date, first_present, normalize_record

SENTINEL = "EXTRACTO SOCIETARIO ELECTRÓNICO"


# =========================================================================
# 1. Text cleaning
# =========================================================================


class TestCleanText:
    def test_strips_and_collapses(self):
        text = "  Hello   world\n\n\n\nSecond  line \n"
        assert clean_text({}, text) == "Hello world\nSecond line"

    def test_single_newlines_kept(self):
        assert clean_text({}, "a\nb\nc") == "a\nb\nc"

    def test_other_title_keeps_tabs(self):
        assert clean_text({"dc:title": "Informe"}, "a\tb\n\nc") == "a\tb\nc"

    def test_sentinel_title_removes_line_structure(self):
        assert clean_text({"dc:title": SENTINEL}, "a\tb\n\nc") == "a bc"

    def test_sentinel_must_match_exactly(self):
        meta = {"dc:title": SENTINEL.lower()}
        assert clean_text(meta, "a\tb\n\nc") == "a\tb\nc"

    def test_sentinel_only_read_from_dc_title(self):
        assert clean_text({"title": SENTINEL}, "a\n\nb") == "a\nb"

    def test_whitespace_only_becomes_empty(self):
        assert clean_text({}, " \n\n \t ") == ""


# =========================================================================
# 2. CVE lookup
# =========================================================================


class TestFindCve:
    def test_finds_cve_in_text(self):
        assert find_cve({}, "CVE: ABCD12345") == "ABCD12345"

    def test_no_match_returns_empty(self):
        assert find_cve({"Keyword": "contrato"}, "sin identificador") == ""

    def test_case_insensitive_and_optional_space(self):
        assert find_cve({}, "ver cve:abcde1 adjunto") == "abcde1"

    def test_parenthesised_prefix(self):
        assert find_cve({}, "Código (CVE): 12345XYZ") == "12345XYZ"

    def test_requires_boundary_after_identifier(self):
        assert find_cve({}, "CVE: ABCDEFGHIJKLMNOPQ") == ""

    def test_too_short_identifier(self):
        assert find_cve({}, "CVE: AB12") == ""

    def test_metadata_wins_over_text(self):
        meta = {"pdf:docinfo:keywords": "CVE: META00001"}
        assert find_cve(meta, "CVE: TEXT00001") == "META00001"

    def test_metadata_key_priority(self):
        meta = {
            "pdf:docinfo:keywords": "CVE: THIRD0001",
            "meta:keyword": "CVE: SECOND001",
            "Keyword": "CVE: FIRST0001",
        }
        assert find_cve(meta, "") == "FIRST0001"

    def test_non_matching_key_falls_through(self):
        meta = {"Keyword": "contrato, escritura", "meta:keyword": "CVE: SECOND001"}
        assert find_cve(meta, "CVE: TEXT00001") == "SECOND001"

    def test_falls_back_to_text_when_no_key_matches(self):
        meta = {"Keyword": "nada"}
        assert find_cve(meta, "Documento CVE: TEXT00001\nfin") == "TEXT00001"


# =========================================================================
# 3. Date lookup and helper
# =========================================================================


class TestFindDate:
    def test_priority_order(self):
        meta = {"created": "2020-01-01", "Creation-Date": "2019-05-05", "date": "2018"}
        assert find_date(meta) == "2019-05-05"

    def test_later_keys_used_when_earlier_missing(self):
        assert find_date({"pdf:docinfo:created": "2022-02-02"}) == "2022-02-02"

    def test_missing_returns_empty(self):
        assert find_date({"title": "x"}) == ""


class TestFirstPresent:
    def test_skips_none(self):
        assert first_present({"a": None, "b": "2"}, ("a", "b")) == "2"

    def test_empty_string_counts_as_present(self):
        assert first_present({"a": "", "b": "2"}, ("a", "b")) == ""

    def test_default(self):
        assert first_present({}, ("a",), default="-") == "-"


# =========================================================================
# 4. Full normalization
# =========================================================================


class TestNormalizeRecord:
    META = {
        "title": "Escritura",
        "dc:title": "Escritura",
        "Creation-Date": "2021-03-04T10:00:00Z",
        "Keyword": "CVE: KEY000001",
    }

    def test_builds_all_fields(self):
        record = normalize_record(
            self.META,
            "  Texto  del\n\n\ndocumento ",
            file_name="a.pdf",
            path="docs/a.pdf",
            tag="docs",
        )
        assert record.title == "Escritura"
        assert record.file_name == "a.pdf"
        assert record.path == "docs/a.pdf"
        assert record.tag == "docs"
        assert record.date == "2021-03-04T10:00:00Z"
        assert record.cve == "KEY000001"
        assert record.content == "Texto del\ndocumento"
        assert record.url is None

    def test_idempotent(self):
        kwargs = {"file_name": "a.pdf", "path": "a.pdf", "tag": "t"}
        first = normalize_record(self.META, "CVE: ABCDE12 texto", **kwargs)
        second = normalize_record(self.META, "CVE: ABCDE12 texto", **kwargs)
        assert first == second
        assert first.doc_id == second.doc_id

    def test_missing_title_is_empty(self):
        record = normalize_record({}, "texto", file_name="a", path="a", tag="t")
        assert record.title == ""

    def test_explicit_provenance_skips_scan(self):
        record = normalize_record(
            self.META,
            "texto",
            file_name="a",
            path="",
            tag="t",
            cve="SIDE00001",
            date="2020-01-01",
            url="https://example.org/a.pdf",
        )
        assert record.cve == "SIDE00001"
        assert record.date == "2020-01-01"
        assert record.url == "https://example.org/a.pdf"

    def test_missing_cve_is_a_warning_not_an_error(self, caplog):
        with caplog.at_level(logging.WARNING, logger="ingestion.normalize"):
            record = normalize_record({}, "texto", file_name="a.pdf", path="x/a.pdf", tag="t")
        assert record.cve == ""
        assert record.content == "texto"
        assert any("CVE not found in x/a.pdf" in r.message for r in caplog.records)
