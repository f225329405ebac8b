"""
Unit tests for the label entity: keywords, signatures, token overrides
"""
import time

import pytest

from labeler.core.errors import IndexOutOfRange, InvalidKeyword, InvalidRegex
from labeler.core.label import Keyword, Label, Signature, compile_signature


@pytest.fixture
def label():
    return Label.create(
        name="ZmEu scanner",
        label_id=1,
        samples=["GET /scripts/setup.php HTTP/1.1 ZmEu"],
        keyword_groups=[["scripts", "setup.php", "ZmEu"], ["ZmEu"]],
        signatures=[r"w00tw00t\.at\.ISC\.SANS"],
    )


@pytest.mark.unit
class TestKeywordParsing:
    """Test comma-delimited keyword phrases"""

    def test_spaces_are_preserved(self):
        keyword = Keyword.parse("SSL_CLIENT_VERIFY: SUCCESS,?action=file_download")

        assert keyword.tokens == ("SSL_CLIENT_VERIFY: SUCCESS", "?action=file_download")

    def test_no_trimming_around_delimiter(self):
        keyword = Keyword.parse("GET , /admin")

        assert keyword.tokens == ("GET ", " /admin")

    def test_single_token(self):
        assert Keyword.parse("ZmEu").tokens == ("ZmEu",)

    @pytest.mark.parametrize("phrase", ["", "a,,b", "a,", ",a"])
    def test_empty_segments_rejected(self, phrase):
        with pytest.raises(InvalidKeyword):
            Keyword.parse(phrase)

    def test_str_round_trips(self):
        assert str(Keyword.parse("scripts,setup.php,ZmEu")) == "scripts,setup.php,ZmEu"


@pytest.mark.unit
class TestKeywordEditing:
    """Test adding and removing keywords by display index"""

    def test_add_keyword(self, label):
        keyword = label.add_keyword("SSL_CLIENT_VERIFY: SUCCESS,?action=file_download")

        assert label.keywords[-1] == keyword
        assert len(keyword.tokens) == 2

    def test_duplicate_keyword_is_noop(self, label):
        label.add_keyword("ZmEu")

        assert len(label.keywords) == 2

    def test_remove_renumbers(self, label):
        label.add_keyword("phpmyadmin")
        removed = label.remove_keyword(1)

        assert removed == Keyword(("scripts", "setup.php", "ZmEu"))
        assert label.keyword_at(1) == Keyword(("ZmEu",))
        assert label.keyword_at(2) == Keyword(("phpmyadmin",))

    def test_remove_then_add_does_not_resurrect(self, label):
        removed = label.remove_keyword(2)
        label.add_keyword("wp-login.php")

        assert removed not in label.keywords
        assert label.keyword_at(2) == Keyword(("wp-login.php",))

    def test_index_out_of_range(self, label):
        with pytest.raises(IndexOutOfRange) as exc_info:
            label.remove_keyword(5)

        assert exc_info.value.size == 2
        assert "valid: 1..2" in str(exc_info.value)
        assert len(label.keywords) == 2

    def test_index_zero_rejected(self, label):
        with pytest.raises(IndexOutOfRange):
            label.keyword_at(0)

    def test_empty_label_reports_no_valid_range(self):
        with pytest.raises(IndexOutOfRange) as exc_info:
            Label(name="empty").remove_signature(1)

        assert "valid: none" in str(exc_info.value)

    def test_discard_keyword(self, label):
        assert label.discard_keyword(Keyword(("ZmEu",))) is True
        assert label.discard_keyword(Keyword(("ZmEu",))) is False


@pytest.mark.unit
class TestSignatures:
    """Test signature validation at add time"""

    def test_add_and_remove(self, label):
        label.add_signature(r"/pma/[a-z]+\.php")
        removed = label.remove_signature(1)

        assert removed == Signature(r"w00tw00t\.at\.ISC\.SANS")
        assert label.signature_at(1) == Signature(r"/pma/[a-z]+\.php")

    def test_invalid_regex_rejected(self, label):
        with pytest.raises(InvalidRegex):
            label.add_signature("(unclosed")

        assert len(label.signatures) == 1

    def test_empty_pattern_rejected(self):
        with pytest.raises(InvalidRegex):
            compile_signature("")

    def test_length_cap(self):
        with pytest.raises(InvalidRegex) as exc_info:
            compile_signature("a" * 11, max_length=10)

        assert "longer than 10" in str(exc_info.value)

    @pytest.mark.parametrize("pattern", [
        r"(a)\1",
        r"/admin(?=\.php)",
        r"(?<!/)setup\.php",
    ])
    def test_unsupported_constructs_rejected(self, pattern):
        with pytest.raises(InvalidRegex):
            compile_signature(pattern)

    @pytest.mark.parametrize("pattern", [
        r"(/[a-z0-9_-]+)+\.php",
        r"\d+(\.\d+)*",
        r"(GET /\w+)+ HTTP",
        r"(a+)+",
        r"w00tw00t\.at\.ISC\.SANS",
    ])
    def test_repeated_groups_accepted(self, pattern):
        compile_signature(pattern)

    def test_repeated_group_matches(self):
        signature = Signature(r"(/[a-z0-9_-]+)+\.php")

        assert signature.search("GET /scripts/setup/index.php HTTP/1.1")
        assert not signature.search("GET /scripts/setup/index.html HTTP/1.1")

    @pytest.mark.parametrize("pattern", [r"^(a|a)*b$", r"^(a+)+$"])
    def test_ambiguous_repetition_runs_in_linear_time(self, pattern):
        compile_signature(pattern)
        signature = Signature(pattern)
        text = "a" * 5000 + "!"

        start = time.perf_counter()
        assert not signature.search(text)
        assert time.perf_counter() - start < 1.0

    def test_search(self):
        assert Signature(r"/pma/[a-z]+\.php").search("GET /pma/login.php HTTP/1.1")
        assert not Signature(r"/pma/[a-z]+\.php").search("GET /PMA/login.php")


@pytest.mark.unit
class TestLabel:
    """Test label construction, token overrides and rendering"""

    def test_create_collapses_duplicates(self):
        label = Label.create(
            name="dup",
            keyword_groups=[["a"], ["a"]],
            signatures=["x", "x"],
        )

        assert label.keywords == [Keyword(("a",))]
        assert label.signatures == [Signature("x")]

    def test_create_validates_signatures(self):
        with pytest.raises(InvalidRegex):
            Label.create(name="bad", signatures=["(a)\\1"])

    def test_token_override(self, label):
        assert label.set_token_override("ZmEu", False) is True
        assert label.set_token_override("ZmEu", False) is False
        assert not label.is_token_enabled("ZmEu")
        assert label.set_token_override("ZmEu", True) is True
        assert label.is_token_enabled("ZmEu")

    def test_tokens_include_samples_and_keywords(self, label):
        tokens = label.tokens()

        assert {"get", "scripts", "setup.php", "http", "zmeu"} <= tokens
        assert "ZmEu" in tokens

    def test_copy_is_deep(self, label):
        clone = label.copy()
        clone.add_keyword("other")
        clone.set_token_override("ZmEu", False)

        assert len(label.keywords) == 2
        assert not label.disabled_tokens

    def test_freeze(self, label):
        label.set_token_override("ZmEu", False)
        frozen = label.freeze()

        assert frozen.label_id == 1
        assert frozen.keywords == tuple(label.keywords)
        assert not frozen.is_token_enabled("ZmEu")

    def test_describe_numbers_from_one(self, label):
        text = label.describe()

        assert text.startswith("#1 ZmEu scanner")
        assert "[1] scripts,setup.php,ZmEu" in text
        assert "[2] ZmEu" in text
        assert r"[1] w00tw00t\.at\.ISC\.SANS" in text
