"""Unit tests for file type detection and event normalization."""
from datetime import datetime

import pytest

from pmta_insights.core.constants import FILE_TYPE_HEADERS, EventType
from pmta_insights.services.normalizer import (
    build_message_key,
    detect_type,
    extract_domain,
    normalize_event,
    parse_timestamp,
)


class TestDetectType:
    """Tests for detect_type."""

    def test_fbl_headers(self):
        """A complete feedback-loop header set is detected as fbl."""
        assert detect_type(["type", "timeLogged", "orig", "rcpt", "vmta", "jobId"]) == "fbl"

    def test_full_tran_headers(self):
        """Transaction headers beat the partially matching accounting table."""
        assert detect_type(FILE_TYPE_HEADERS[EventType.TRAN]) == "tran"

    def test_tie_prefers_first_declared_type(self):
        """Accounting headers fully cover the tran table too; acct is declared first."""
        assert detect_type(FILE_TYPE_HEADERS[EventType.ACCT]) == "acct"

    def test_rate_block_headers(self):
        """Rate-block headers are detected as rb."""
        assert detect_type(["type", "timeLogged", "vmta", "domain", "rbType", "dsnStatus", "dsnDiag"]) == "rb"

    def test_case_and_whitespace_insensitive(self):
        """Header matching ignores case and surrounding whitespace."""
        headers = [" TYPE", "timelogged ", "ORIG", "Rcpt", "VMTA", "jobid"]
        assert detect_type(headers) == "fbl"

    def test_unrelated_headers_are_unknown(self):
        """Headers matching no table are unknown."""
        assert detect_type(["foo", "bar"]) == "unknown"

    def test_empty_headers_are_unknown(self):
        """No headers at all is unknown."""
        assert detect_type([]) == "unknown"
        assert detect_type(None) == "unknown"

    def test_below_threshold_is_unknown(self):
        """Best match of 50% stays below the default 60% minimum."""
        headers = ["type", "timeLogged", "vmta"]
        assert detect_type(headers) == "unknown"

    def test_custom_threshold(self):
        """A lower minimum ratio accepts the best partial match."""
        headers = ["type", "timeLogged", "vmta"]
        assert detect_type(headers, min_match_ratio=0.5) == "fbl"


class TestNormalizeEvent:
    """Tests for normalize_event."""

    @pytest.fixture
    def tran_row(self):
        return {
            "type": "d",
            "timeLogged": "2024-03-01 10:00:05",
            "timeQueued": "2024-03-01 10:00:00",
            "orig": "sender@brand.com",
            "rcpt": "User@Example.COM",
            "dsnStatus": "2.0.0 (success)",
            "dsnDiag": "smtp;250 ok",
            "vmta": "vmta-1",
            "jobId": "job-42",
        }

    def test_missing_input_returns_none(self, tran_row):
        """Absent row or type yields None."""
        assert normalize_event(None, "tran", 1) is None
        assert normalize_event({}, "tran", 1) is None
        assert normalize_event(tran_row, None, 1) is None

    def test_field_mapping(self, tran_row):
        """Raw PMTA fields map onto the canonical event."""
        event = normalize_event(tran_row, "tran", 7)
        assert event.file_id == 7
        assert event.event_type == "tran"
        assert event.event_timestamp == datetime(2024, 3, 1, 10, 0, 5)
        assert event.sender == "sender@brand.com"
        assert event.recipient == "User@Example.COM"
        assert event.recipient_domain == "example.com"
        assert event.vmta == "vmta-1"
        assert event.job_id == "job-42"
        assert event.smtp_status == "2.0.0 (success)"
        assert event.dsn_diagnostic == "smtp;250 ok"
        assert event.delivery_latency_seconds == 5.0

    def test_raw_fields_kept(self, tran_row):
        """The whole raw row is preserved."""
        event = normalize_event(tran_row, "tran", 1)
        assert event.raw_fields == tran_row

    def test_is_pure(self, tran_row):
        """Same input gives equal output and the input is not mutated."""
        snapshot = dict(tran_row)
        first = normalize_event(tran_row, "tran", 1)
        second = normalize_event(tran_row, "tran", 1)
        assert first == second
        assert tran_row == snapshot

    def test_message_key_prefers_message_id(self, tran_row):
        """messageId wins over the job/recipient pair."""
        tran_row["messageId"] = "<abc@mta>"
        assert normalize_event(tran_row, "tran", 1).message_key == "<abc@mta>"

    def test_message_key_falls_back_to_job_and_recipient(self, tran_row):
        """Without messageId the key is jobId:rcpt."""
        assert normalize_event(tran_row, "tran", 1).message_key == "job-42:User@Example.COM"

    def test_empty_message_id_counts_as_absent(self, tran_row):
        """Empty strings are treated as missing values."""
        tran_row["messageId"] = ""
        event = normalize_event(tran_row, "tran", 1)
        assert event.message_id is None
        assert event.message_key == "job-42:User@Example.COM"

    def test_message_key_none_without_identity(self, tran_row):
        """No messageId and no jobId leaves the key empty."""
        del tran_row["jobId"]
        assert normalize_event(tran_row, "tran", 1).message_key is None

    def test_explicit_domain_wins(self):
        """The domain column is preferred and lower-cased."""
        row = {"type": "rb", "timeLogged": "2024-03-01 10:00:00", "domain": "Gmail.COM", "vmta": "v1"}
        event = normalize_event(row, "rb", 1)
        assert event.recipient_domain == "gmail.com"
        assert event.event_type == "rb"

    @pytest.mark.parametrize("code,expected", [
        ("d", "tran"),
        ("B", "bounce"),
        ("t", "acct"),
        ("f", "fbl"),
        ("r", "rb"),
        ("p", "acct"),
        ("x", "acct"),
        ("", "acct"),
    ])
    def test_acct_record_type_mapping(self, tran_row, code, expected):
        """Accounting records are remapped by the first character of type."""
        tran_row["type"] = code
        assert normalize_event(tran_row, "acct", 1).event_type == expected

    def test_mapping_only_applies_to_acct(self, tran_row):
        """Other file types keep their detected type."""
        tran_row["type"] = "b"
        assert normalize_event(tran_row, "tran", 1).event_type == "tran"

    def test_unparsable_timestamp_degrades_to_none(self, tran_row):
        """A bad timestamp nulls the field and the latency, not the event."""
        tran_row["timeQueued"] = "not a date"
        event = normalize_event(tran_row, "tran", 1)
        assert event.event_timestamp == datetime(2024, 3, 1, 10, 0, 5)
        assert event.delivery_latency_seconds is None

    def test_vmta_pool_fallback(self, tran_row):
        """vmtaPool2 is used when vmtaPool is missing."""
        tran_row["vmtaPool2"] = "pool-b"
        assert normalize_event(tran_row, "tran", 1).vmta_pool == "pool-b"
        tran_row["vmtaPool"] = "pool-a"
        assert normalize_event(tran_row, "tran", 1).vmta_pool == "pool-a"

    def test_header_lookup_is_case_insensitive(self):
        """Lower-cased headers map like their camelCase originals."""
        row = {"type": "d", "timelogged": "2024-03-01 10:00:00", "orig": "a@b.com", "rcpt": "c@d.com", "jobid": "j1"}
        event = normalize_event(row, "acct", 1)
        assert event.job_id == "j1"
        assert event.event_type == "tran"


class TestHelpers:
    """Tests for normalization helpers."""

    def test_parse_timestamp_converts_offsets_to_utc(self):
        """Offset timestamps become naive UTC."""
        assert parse_timestamp("2024-03-01T10:00:00+02:00") == datetime(2024, 3, 1, 8, 0, 0)

    def test_parse_timestamp_rejects_garbage(self):
        """Unparsable or empty values are None."""
        assert parse_timestamp("garbage") is None
        assert parse_timestamp("") is None
        assert parse_timestamp(None) is None

    def test_extract_domain(self):
        """Domain is the lower-cased part after the last @."""
        assert extract_domain("Someone@Mail.Example.org") == "mail.example.org"
        assert extract_domain("no-at-sign") is None
        assert extract_domain(None) is None

    def test_build_message_key(self):
        """Key precedence: message id, then job:recipient, then None."""
        assert build_message_key("m1", "j", "r") == "m1"
        assert build_message_key(None, "j", "r") == "j:r"
        assert build_message_key(None, None, "r") is None
