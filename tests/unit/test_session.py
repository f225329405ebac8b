"""
Unit tests for the edit session: scopes, staging and preview
"""
import pytest

from labeler.core.clusters import Cluster, Qualifier
from labeler.core.errors import (
    DuplicateNameError,
    IndexOutOfRange,
    InvalidRegex,
    ScopeError,
    UnknownLabel,
    UnknownToken,
)
from labeler.core.label import Keyword, Signature
from labeler.core.mutations import AddKeyword, RemoveKeyword, SetTokenState
from labeler.core.session import Scope


@pytest.mark.unit
class TestScopes:
    """Test the global/label scope state machine"""

    def test_starts_in_global_scope(self, session):
        assert session.scope == Scope.GLOBAL
        assert session.current_label_id is None

    def test_enter_and_exit(self, session):
        label = session.enter_label(1)

        assert label.name == "ZmEu scanner"
        assert session.scope == Scope.LABEL
        session.exit_label()
        assert session.scope == Scope.GLOBAL

    def test_enter_unknown_label(self, session):
        with pytest.raises(UnknownLabel):
            session.enter_label(99)
        assert session.scope == Scope.GLOBAL

    @pytest.mark.parametrize("stage", [
        lambda s: s.stage_add_keyword("ZmEu"),
        lambda s: s.stage_remove_keyword(1),
        lambda s: s.stage_add_signature("x"),
        lambda s: s.stage_remove_signature(1),
        lambda s: s.stage_remove_label(),
    ])
    def test_label_commands_rejected_in_global_scope(self, session, stage):
        with pytest.raises(ScopeError):
            stage(session)
        assert not session.is_dirty


@pytest.mark.unit
class TestStaging:
    """Test staged keyword/signature/token edits"""

    def test_add_keyword_is_pending_until_commit(self, session, loaded_repository):
        session.enter_label(1)
        keyword = session.stage_add_keyword("SSL_CLIENT_VERIFY: SUCCESS,?action=file_download")

        assert keyword.tokens == ("SSL_CLIENT_VERIFY: SUCCESS", "?action=file_download")
        assert keyword in session.view_label(1).keywords
        assert keyword not in loaded_repository.get_label(1).keywords
        assert session.pending() == [AddKeyword(1, keyword)]

    def test_removal_recorded_by_content(self, session):
        session.enter_label(1)
        session.stage_remove_keyword(1)
        session.stage_remove_keyword(1)

        assert session.pending() == [
            RemoveKeyword(1, Keyword(("scripts", "setup.php", "ZmEu"))),
            RemoveKeyword(1, Keyword(("ZmEu",))),
        ]
        assert session.view_label(1).keywords == []

    def test_remove_then_add_does_not_resurrect(self, session):
        session.enter_label(1)
        removed = session.stage_remove_keyword(2)
        session.stage_add_keyword("wp-login.php")

        keywords = session.view_label(1).keywords
        assert removed not in keywords
        assert keywords[1] == Keyword(("wp-login.php",))

    def test_stale_index_leaves_log_untouched(self, session):
        session.enter_label(3)
        with pytest.raises(IndexOutOfRange):
            session.stage_remove_keyword(2)
        assert not session.is_dirty

    def test_invalid_signature_leaves_log_untouched(self, session):
        session.enter_label(1)
        with pytest.raises(InvalidRegex):
            session.stage_add_signature("(a)\\1")
        assert not session.is_dirty

    def test_signature_add_and_remove(self, session):
        session.enter_label(2)
        session.stage_add_signature(r"/phpMyAdmin-\d+/")
        removed = session.stage_remove_signature(1)

        assert removed == Signature(r"/pma/[a-z]+\.php")
        assert session.view_label(2).signatures == [Signature(r"/phpMyAdmin-\d+/")]

    def test_unknown_token(self, session):
        with pytest.raises(UnknownToken):
            session.stage_disable_token("never-seen")
        assert not session.is_dirty

    def test_global_token_disable(self, session):
        session.stage_disable_token("ZmEu")

        assert not session.preview.dictionary.is_enabled("ZmEu")
        assert session.pending() == [SetTokenState("ZmEu", False, None)]

    def test_label_token_disable(self, session):
        session.enter_label(1)
        session.stage_disable_token("ZmEu")

        assert "ZmEu" in session.view_label(1).disabled_tokens
        assert session.preview.dictionary.is_enabled("ZmEu")

    def test_label_enable_of_globally_disabled_token_rejected(self, session):
        session.stage_disable_token("ZmEu")
        session.enter_label(1)

        with pytest.raises(ScopeError) as exc_info:
            session.stage_enable_token("ZmEu")

        assert "disabled for all labels" in str(exc_info.value)
        assert len(session.pending()) == 1
        assert not session.preview.dictionary.is_enabled("ZmEu")

    def test_label_enable_restores_override(self, session):
        session.enter_label(1)
        session.stage_disable_token("ZmEu")
        session.stage_enable_token("ZmEu")

        assert "ZmEu" not in session.view_label(1).disabled_tokens

    def test_operator_keyword_tokens_become_known(self, session):
        session.enter_label(1)
        session.stage_add_keyword("brand-new-token")
        session.stage_disable_token("brand-new-token")

        assert "brand-new-token" in session.view_label(1).disabled_tokens


@pytest.mark.unit
class TestLabelRemoval:

    def test_remove_by_id_in_global_scope(self, session):
        assert session.stage_remove_label(2) == 2
        assert [label.label_id for label in session.view_labels()] == [1, 3]

    def test_remove_current_label_exits_scope(self, session):
        session.enter_label(1)
        session.stage_remove_label()

        assert session.scope == Scope.GLOBAL
        with pytest.raises(UnknownLabel):
            session.view_label(1)

    def test_remove_unknown_label(self, session):
        with pytest.raises(UnknownLabel):
            session.stage_remove_label(42)


@pytest.mark.unit
class TestLoadAndLog:

    def test_load_collision_rejected(self, session, threat_file):
        with pytest.raises(DuplicateNameError) as exc_info:
            session.stage_load([str(threat_file)])

        assert "ZmEu scanner" in exc_info.value.names
        assert not session.is_dirty

    def test_load_force_reuses_ids(self, session, threat_file):
        labels = session.stage_load([str(threat_file)], force_overwrite=True)

        assert [label.label_id for label in labels] == [1, 2, 3]
        assert len(session.view_labels()) == 3

    def test_collect_reference_tokens(self, session):
        added = session.stage_collect_tokens([
            Cluster(1, ("robots.txt", "ZmEu"), qualifier=Qualifier.BENIGN),
            Cluster(2, ("ignored-token",), qualifier=Qualifier.UNKNOWN),
        ])

        assert added == 1
        assert "robots.txt" in session.preview.dictionary
        assert "ignored-token" not in session.preview.dictionary

    def test_describe_pending(self, session):
        assert session.describe_pending() == "no pending changes"
        session.enter_label(1)
        session.stage_add_keyword("wp-login.php")

        assert "1. #1 add keyword wp-login.php" in session.describe_pending()

    def test_discard(self, session):
        session.enter_label(1)
        session.stage_add_keyword("wp-login.php")
        session.discard()

        assert not session.is_dirty
        assert Keyword(("wp-login.php",)) not in session.view_label(1).keywords
        assert session.scope == Scope.LABEL
