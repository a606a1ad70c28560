"""Tests for the extraction worker and the extractor adapters."""

from __future__ import annotations

import json
import sys

import pytest

from conftest import FakeExtractor
from ingestion import (
    ExtractionError,
    MissingMetadataError,
    TikaExtractor,
    extract_record,
    quiet_output,
)
from ingestion.extraction import _flatten_metadata


class TestExtractRecord:
    def test_returns_normalized_record(self, docs_dir, fake_extractor):
        record = extract_record(docs_dir / "doc03.pdf", "contracts", fake_extractor)
        assert record is not None
        assert record.file_name == "doc03.pdf"
        assert record.title == "doc03"
        assert record.cve == "ABC00003"
        assert record.content == "Contract 3\nCVE: ABC00003 signed"
        assert record.url is None

    def test_empty_content_returns_none(self, docs_dir, fake_extractor):
        assert extract_record(docs_dir / "empty0.pdf", "t", fake_extractor) is None

    def test_extractor_errors_propagate(self, docs_dir, fake_extractor):
        with pytest.raises(RuntimeError, match="corrupt"):
            extract_record(docs_dir / "broken0.pdf", "t", fake_extractor)

    def test_sidecar_provenance(self, tmp_path):
        doc = tmp_path / "ABC12345.pdf"
        doc.write_text("texto sin identificador", encoding="utf-8")
        (tmp_path / "ABC12345.json").write_text(
            json.dumps({"url": "https://example.org/a.pdf", "cve": "ABC12345", "date": "2023-01-02"}),
            encoding="utf-8",
        )
        record = extract_record(doc, "t", FakeExtractor(), use_sidecar=True)
        assert record.file_name == "ABC12345"
        assert record.path == ""
        assert record.cve == "ABC12345"
        assert record.date == "2023-01-02"
        assert record.url == "https://example.org/a.pdf"
        assert record.to_dict()["url"] == "https://example.org/a.pdf"

    def test_missing_sidecar_is_a_file_failure(self, docs_dir, fake_extractor):
        with pytest.raises(MissingMetadataError):
            extract_record(docs_dir / "doc00.pdf", "t", fake_extractor, use_sidecar=True)
        assert fake_extractor.calls == []

    def test_extractor_output_is_suppressed(self, docs_dir, capsys):
        def _noisy(path):
            print("INFO  [main] org.apache.tika noise")
            print("warning: font missing", file=sys.stderr)
            return {}, "CVE: ABCDE123 texto"

        record = extract_record(docs_dir / "doc00.pdf", "t", _noisy)
        captured = capsys.readouterr()
        assert "tika noise" not in captured.out
        assert "font missing" not in captured.err
        assert record.cve == "ABCDE123"


class TestQuietOutput:
    def test_restores_streams(self):
        before = (sys.stdout, sys.stderr)
        with quiet_output():
            with quiet_output():
                assert sys.stdout is not before[0]
            assert sys.stdout is not before[0]
        assert (sys.stdout, sys.stderr) == before

    def test_restores_streams_after_error(self):
        before = sys.stdout
        with pytest.raises(ValueError):
            with quiet_output():
                raise ValueError("boom")
        assert sys.stdout is before


class TestTikaExtractor:
    def test_flatten_metadata_takes_first_value(self):
        raw = {"title": ["A", "B"], "date": "2020", "empty": [], "none": None}
        assert _flatten_metadata(raw) == {"title": "A", "date": "2020"}

    def test_parses_tika_response(self, monkeypatch, tmp_path):
        seen = {}

        def _from_file(filename, **kwargs):
            seen["filename"] = filename
            seen["kwargs"] = kwargs
            return {
                "status": 200,
                "metadata": {"dc:title": ["Acta"], "Creation-Date": "2020-01-01"},
                "content": None,
            }

        monkeypatch.setattr("tika.parser.from_file", _from_file)
        extractor = TikaExtractor(server_endpoint="http://tika:9998")
        metadata, text = extractor(tmp_path / "a.pdf")
        assert metadata == {"dc:title": "Acta", "Creation-Date": "2020-01-01"}
        assert text == ""
        assert seen["kwargs"]["serverEndpoint"] == "http://tika:9998"

    def test_error_status_raises(self, monkeypatch, tmp_path):
        monkeypatch.setattr(
            "tika.parser.from_file",
            lambda filename, **kwargs: {"status": 422, "metadata": None, "content": None},
        )
        with pytest.raises(ExtractionError):
            TikaExtractor(server_endpoint="http://tika:9998")(tmp_path / "a.pdf")
