"""
Unit tests for token extraction from raw samples
"""
import pytest

from labeler.core.tokenizer import (
    extract_tokens,
    extract_tokens_from_samples,
    is_dot_digit,
    is_hexcode,
    split_runs,
)


@pytest.mark.unit
class TestSplitRuns:
    """Test splitting text into token-character runs"""

    def test_delimiters(self):
        assert split_runs("GET /scripts/setup.php HTTP/1.1") == ["GET", "scripts", "setup.php", "HTTP", "1.1"]

    def test_token_punctuation_kept(self):
        assert split_runs("mail admin@example.com via foo_bar-baz") == [
            "mail", "admin@example.com", "via", "foo_bar-baz"
        ]

    def test_empty(self):
        assert split_runs("") == []
        assert split_runs("/// ???") == []


@pytest.mark.unit
class TestExtractTokens:
    """Test token filtering and normalization"""

    def test_request_line(self):
        assert extract_tokens("GET /scripts/setup.php HTTP/1.1") == ["get", "scripts", "setup.php", "http"]

    def test_numbers_and_addresses_dropped(self):
        assert extract_tokens("from 10.0.0.1 port 8080") == ["from", "port"]

    def test_short_tokens_dropped(self):
        assert extract_tokens("a ab abc") == ["abc"]

    def test_long_hex_dropped(self):
        assert extract_tokens("id deadbeefdeadbeefdeadbeef") == []
        assert extract_tokens("id deadbeef") == ["deadbeef"]

    def test_lowercase(self):
        assert extract_tokens("ZmEu") == ["zmeu"]

    def test_duplicates_kept_in_order(self):
        assert extract_tokens("abc xyz abc") == ["abc", "xyz", "abc"]

    def test_empty_text(self):
        assert extract_tokens("") == []

    def test_samples_concatenated(self):
        tokens = extract_tokens_from_samples(["GET /admin", "POST /login"])
        assert tokens == ["get", "admin", "post", "login"]


@pytest.mark.unit
class TestPredicates:

    def test_is_hexcode(self):
        assert is_hexcode("DEADbeef0123")
        assert not is_hexcode("deadbeefx")

    def test_is_dot_digit(self):
        assert is_dot_digit("192.168.1.1")
        assert not is_dot_digit("v1.2")
