"""
Staged mutations

Each mutation is a frozen command recorded against stable identities (label
id, keyword content, signature pattern, token text), never against display
indices. A transaction log of mutations is replayed onto a WorkingState, both
for the session's preview and for the repository's commit.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Set, Tuple

from labeler.core.clusters import Cluster
from labeler.core.dictionary import Dictionary, TokenSource
from labeler.core.errors import DuplicateNameError, UnknownLabel
from labeler.core.label import DEFAULT_MAX_SIGNATURE_LENGTH, Keyword, Label, Signature
from labeler.core.tokenizer import extract_tokens_from_samples

logger = logging.getLogger(__name__)


@dataclass
class WorkingState:
    """
    Mutable copy of labels and dictionary that a log is applied to.

    Tracks which rows changed so the repository writes only those.
    """
    labels: Dict[int, Label]
    dictionary: Dictionary
    max_signature_length: int = DEFAULT_MAX_SIGNATURE_LENGTH
    dirty_labels: Set[int] = field(default_factory=set)
    removed_labels: Set[int] = field(default_factory=set)
    dirty_tokens: Set[str] = field(default_factory=set)

    def copy(self) -> "WorkingState":
        return WorkingState(
            labels={label_id: label.copy() for label_id, label in self.labels.items()},
            dictionary=self.dictionary.copy(),
            max_signature_length=self.max_signature_length,
            dirty_labels=set(self.dirty_labels),
            removed_labels=set(self.removed_labels),
            dirty_tokens=set(self.dirty_tokens),
        )

    def label(self, label_id: int) -> Label:
        if label_id not in self.labels:
            raise UnknownLabel(f"#{label_id}")
        return self.labels[label_id]

    def find_by_name(self, name: str) -> Optional[Label]:
        for label in self.labels.values():
            if label.name == name:
                return label
        return None

    def touch_label(self, label_id: int):
        self.dirty_labels.add(label_id)
        self.removed_labels.discard(label_id)

    def register_tokens(self, tokens, source: TokenSource):
        self.dirty_tokens.update(self.dictionary.add_tokens(tokens, source))


class Mutation:
    """Base class for log entries."""

    def apply(self, state: WorkingState) -> None:
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class AddLabel(Mutation):
    label: Label
    overwrite: bool = False

    @property
    def label_id(self) -> int:
        return self.label.label_id

    def apply(self, state: WorkingState) -> None:
        existing = state.find_by_name(self.label.name)
        if existing is not None and existing.label_id != self.label.label_id:
            raise DuplicateNameError([self.label.name])
        if self.label.label_id in state.labels and not self.overwrite:
            raise DuplicateNameError([self.label.name])

        label = self.label.copy()
        state.labels[label.label_id] = label
        state.touch_label(label.label_id)
        state.register_tokens(extract_tokens_from_samples(label.samples), TokenSource.SAMPLE)
        for keyword in label.keywords:
            state.register_tokens(keyword.tokens, TokenSource.KEYWORD)

    def describe(self) -> str:
        action = "overwrite" if self.overwrite else "load"
        return f"{action} label #{self.label.label_id} {self.label.name}"


@dataclass(frozen=True)
class RemoveLabel(Mutation):
    label_id: int

    def apply(self, state: WorkingState) -> None:
        state.label(self.label_id)
        del state.labels[self.label_id]
        state.dirty_labels.discard(self.label_id)
        state.removed_labels.add(self.label_id)

    def describe(self) -> str:
        return f"remove label #{self.label_id}"


@dataclass(frozen=True)
class AddKeyword(Mutation):
    label_id: int
    keyword: Keyword

    def apply(self, state: WorkingState) -> None:
        label = state.label(self.label_id)
        label.add_keyword_tokens(self.keyword.tokens)
        state.touch_label(self.label_id)
        state.register_tokens(self.keyword.tokens, TokenSource.OPERATOR)

    def describe(self) -> str:
        return f"#{self.label_id} add keyword {self.keyword}"


@dataclass(frozen=True)
class RemoveKeyword(Mutation):
    label_id: int
    keyword: Keyword

    def apply(self, state: WorkingState) -> None:
        label = state.label(self.label_id)
        if not label.discard_keyword(self.keyword):
            logger.warning(f"#{self.label_id}: keyword {self.keyword} already removed")
        state.touch_label(self.label_id)

    def describe(self) -> str:
        return f"#{self.label_id} remove keyword {self.keyword}"


@dataclass(frozen=True)
class AddSignature(Mutation):
    label_id: int
    signature: Signature

    def apply(self, state: WorkingState) -> None:
        label = state.label(self.label_id)
        label.add_signature(self.signature.pattern, state.max_signature_length)
        state.touch_label(self.label_id)

    def describe(self) -> str:
        return f"#{self.label_id} add signature {self.signature}"


@dataclass(frozen=True)
class RemoveSignature(Mutation):
    label_id: int
    signature: Signature

    def apply(self, state: WorkingState) -> None:
        label = state.label(self.label_id)
        if not label.discard_signature(self.signature):
            logger.warning(f"#{self.label_id}: signature {self.signature} already removed")
        state.touch_label(self.label_id)

    def describe(self) -> str:
        return f"#{self.label_id} remove signature {self.signature}"


@dataclass(frozen=True)
class SetTokenState(Mutation):
    """Enable/disable a token globally (label_id None) or for one label."""
    token: str
    enabled: bool
    label_id: Optional[int] = None

    def apply(self, state: WorkingState) -> None:
        ref = state.dictionary.resolve(self.token)
        if self.label_id is None:
            if state.dictionary.set_enabled(ref, self.enabled):
                state.dirty_tokens.add(ref)
            return
        label = state.label(self.label_id)
        if label.set_token_override(ref, self.enabled):
            state.touch_label(self.label_id)

    def describe(self) -> str:
        action = "enable" if self.enabled else "disable"
        scope = "all labels" if self.label_id is None else f"#{self.label_id}"
        return f"{action} token {self.token!r} ({scope})"


@dataclass(frozen=True)
class CollectReferenceTokens(Mutation):
    """Register the tokens of benign and suspicious reference clusters."""
    clusters: Tuple[Cluster, ...]

    def apply(self, state: WorkingState) -> None:
        state.dirty_tokens.update(state.dictionary.collect_from_clusters(self.clusters))

    def describe(self) -> str:
        return f"collect tokens from {len(self.clusters)} reference cluster(s)"
