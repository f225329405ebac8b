"""
Edit Session (staging layer)

Holds the analyst's pending changes until /save. Two scopes:
- Global scope (initial): token enable/disable applies to all labels,
  label removal needs an explicit label id
- Label scope (/label #id): keyword and signature edits, token overrides
  and removal of the current label

Staged changes are an ordered log of mutations recorded by content. The
session keeps a preview (committed state + log) so display indices typed by
the analyst resolve against what they currently see. Nothing is persisted
until the repository commits the log; an abandoned session is simply lost.

Not thread-safe: one session belongs to one command loop.
"""
import logging
from enum import Enum
from typing import TYPE_CHECKING, Iterable, List, Optional

from labeler.core.clusters import Cluster
from labeler.core.errors import ScopeError
from labeler.core.label import Keyword, Label, Signature, compile_signature
from labeler.core.mutations import (
    AddKeyword,
    AddLabel,
    AddSignature,
    CollectReferenceTokens,
    Mutation,
    RemoveKeyword,
    RemoveLabel,
    RemoveSignature,
    SetTokenState,
    WorkingState,
)

if TYPE_CHECKING:
    from labeler.db.label_repository import LabelRepository

logger = logging.getLogger(__name__)


class Scope(str, Enum):
    GLOBAL = "global"
    LABEL = "label"


class EditSession:
    """
    Pending mutations plus the current scope.

    Usage:
        session = EditSession(repository)
        session.enter_label(3)
        session.stage_add_keyword("scripts,setup.php,ZmEu")
        session.commit()
    """

    def __init__(self, repository: "LabelRepository"):
        self.repository = repository
        self._log: List[Mutation] = []
        self._label_id: Optional[int] = None
        self._preview: WorkingState = repository.working_state()

    # Scope

    @property
    def scope(self) -> Scope:
        return Scope.GLOBAL if self._label_id is None else Scope.LABEL

    @property
    def current_label_id(self) -> Optional[int]:
        return self._label_id

    def enter_label(self, label_id: int) -> Label:
        label = self.view_label(label_id)
        self._label_id = label_id
        logger.debug(f"entered label scope #{label_id}")
        return label

    def exit_label(self):
        self._label_id = None

    def _require_label_scope(self, command: str) -> int:
        if self._label_id is None:
            raise ScopeError(f"{command} is only valid in label scope (use /label #id)")
        return self._label_id

    # Preview

    def view_label(self, label_id: int) -> Label:
        """Label with all pending mutations applied."""
        return self._preview.label(label_id)

    def view_labels(self) -> List[Label]:
        return sorted(self._preview.labels.values(), key=lambda label: label.label_id)

    def current_label(self) -> Label:
        return self.view_label(self._require_label_scope("this command"))

    @property
    def preview(self) -> WorkingState:
        return self._preview

    # Staging

    def _stage(self, *mutations: Mutation):
        """Apply to a copy of the preview first; log only if all succeed."""
        candidate = self._preview.copy()
        for mutation in mutations:
            mutation.apply(candidate)
        self._preview = candidate
        self._log.extend(mutations)
        for mutation in mutations:
            logger.debug(f"staged: {mutation.describe()}")

    def stage_add_keyword(self, phrase: str) -> Keyword:
        label_id = self._require_label_scope("add keyword")
        keyword = Keyword.parse(phrase)
        self._stage(AddKeyword(label_id, keyword))
        return keyword

    def stage_remove_keyword(self, display_index: int) -> Keyword:
        label_id = self._require_label_scope("remove keyword")
        keyword = self.view_label(label_id).keyword_at(display_index)
        self._stage(RemoveKeyword(label_id, keyword))
        return keyword

    def stage_add_signature(self, pattern: str) -> Signature:
        label_id = self._require_label_scope("add signature")
        compile_signature(pattern, self._preview.max_signature_length)
        signature = Signature(pattern)
        self._stage(AddSignature(label_id, signature))
        return signature

    def stage_remove_signature(self, display_index: int) -> Signature:
        label_id = self._require_label_scope("remove signature")
        signature = self.view_label(label_id).signature_at(display_index)
        self._stage(RemoveSignature(label_id, signature))
        return signature

    def stage_enable_token(self, token: str):
        if self._label_id is not None and not self._preview.dictionary.is_enabled(token):
            # label overrides can only narrow the global state
            raise ScopeError(
                f"token {token!r} is disabled for all labels; "
                f"enable it in global scope (/x, then /enable token {token})"
            )
        self._stage(SetTokenState(token, True, self._label_id))

    def stage_disable_token(self, token: str):
        self._stage(SetTokenState(token, False, self._label_id))

    def stage_remove_label(self, label_id: Optional[int] = None) -> int:
        """Remove the given label, or the current one in label scope."""
        if label_id is None:
            label_id = self._require_label_scope("remove label without an id")
        self._stage(RemoveLabel(label_id))
        if label_id == self._label_id:
            self.exit_label()
        return label_id

    def stage_labels(self, labels: Iterable[Label], overwrite: bool = False) -> List[Label]:
        labels = list(labels)
        self._stage(*[AddLabel(label, overwrite=overwrite) for label in labels])
        return labels

    def stage_load(self, paths: Iterable[str], force_overwrite: Optional[bool] = None) -> List[Label]:
        """
        Parse threat description documents and stage them as new labels.

        The whole batch is rejected if any name collides with a stored,
        pending, or sibling label (unless force_overwrite).
        """
        paths = list(paths)
        if force_overwrite is None:
            force_overwrite = self.repository.settings.force_overwrite
        existing = {label.name: label.label_id for label in self._preview.labels.values()}
        labels = self.repository.load_threat_descriptions(
            paths, force_overwrite=force_overwrite, existing=existing
        )
        self.stage_labels(labels, overwrite=force_overwrite)
        logger.info(f"{len(labels)} labels staged from {len(paths)} document(s)")
        return labels

    def stage_collect_tokens(self, clusters: Iterable[Cluster]) -> int:
        """Stage the tokens of benign/suspicious reference clusters; returns how many are new."""
        clusters = tuple(clusters)
        before = len(self._preview.dictionary)
        self._stage(CollectReferenceTokens(clusters))
        return len(self._preview.dictionary) - before

    # Log

    def pending(self) -> List[Mutation]:
        return list(self._log)

    @property
    def is_dirty(self) -> bool:
        return bool(self._log)

    def describe_pending(self) -> str:
        if not self._log:
            return "no pending changes"
        return "\n".join(f"{i:>3}. {m.describe()}" for i, m in enumerate(self._log, 1))

    def commit(self):
        """Persist the log through the repository (all or nothing)."""
        return self.repository.save(self)

    def discard(self):
        """Drop every pending change and refresh the preview."""
        if self._log:
            logger.info(f"discarding {len(self._log)} pending change(s)")
        self._log = []
        self._preview = self.repository.working_state()
        if self._label_id is not None and self._label_id not in self._preview.labels:
            self.exit_label()
