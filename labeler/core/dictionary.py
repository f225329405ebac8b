"""
Token Dictionary

Process-wide store of known tokens shared by every label. A token is either
enabled or disabled globally; labels may additionally disable tokens for
themselves (see Label.disabled_tokens).

Token sources:
- sample: extracted from a threat description's samples
- keyword: part of a keyword loaded from a threat description
- operator: typed by the analyst (keyword added at the console)
- benign / suspicious: collected from reference clusters
"""
import logging
import unicodedata
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional

from labeler.core.clusters import Cluster, Qualifier
from labeler.core.errors import UnknownToken

logger = logging.getLogger(__name__)

TokenRef = str


class TokenSource(str, Enum):
    SAMPLE = "sample"
    KEYWORD = "keyword"
    OPERATOR = "operator"
    BENIGN = "benign"
    SUSPICIOUS = "suspicious"


REFERENCE_QUALIFIERS = {
    Qualifier.BENIGN: TokenSource.BENIGN,
    Qualifier.SUSPICIOUS: TokenSource.SUSPICIOUS,
}


def normalize_token(text: str) -> TokenRef:
    """NFC only; case and surrounding spaces are significant."""
    return unicodedata.normalize('NFC', text)


@dataclass(frozen=True)
class Token:
    """Dictionary entry. Text is immutable; only `enabled` changes."""
    text: str
    enabled: bool = True
    source: TokenSource = TokenSource.SAMPLE


class Dictionary:
    """Mutable token store owned by the repository (or a staging copy)."""

    def __init__(self, tokens: Optional[Iterable[Token]] = None):
        self._tokens: Dict[TokenRef, Token] = {}
        for token in tokens or []:
            self._tokens[token.text] = token

    def __len__(self) -> int:
        return len(self._tokens)

    def __contains__(self, text: str) -> bool:
        return normalize_token(text) in self._tokens

    def resolve_or_create(self, text: str, source: TokenSource = TokenSource.OPERATOR) -> TokenRef:
        """Return the ref for `text`, registering it if new. First source wins."""
        ref = normalize_token(text)
        if ref not in self._tokens:
            self._tokens[ref] = Token(text=ref, enabled=True, source=TokenSource(source))
        return ref

    def resolve(self, text: str) -> TokenRef:
        """Return the ref for a known token; UnknownToken otherwise."""
        ref = normalize_token(text)
        if ref not in self._tokens:
            raise UnknownToken(text)
        return ref

    def get(self, text: str) -> Token:
        return self._tokens[self.resolve(text)]

    def set_enabled(self, text: str, enabled: bool) -> bool:
        """
        Enable or disable a token globally.

        Returns:
            True if the state changed

        Raises:
            UnknownToken: token text never seen
        """
        ref = self.resolve(text)
        token = self._tokens[ref]
        if token.enabled == enabled:
            return False
        self._tokens[ref] = Token(text=ref, enabled=enabled, source=token.source)
        logger.debug(f"token {ref!r} {'enabled' if enabled else 'disabled'}")
        return True

    def is_enabled(self, text: str) -> bool:
        """Unknown tokens count as enabled: the dictionary only hides what it knows."""
        token = self._tokens.get(normalize_token(text))
        return token is None or token.enabled

    def all_tokens(self) -> List[Token]:
        return list(self._tokens.values())

    def disabled_tokens(self) -> FrozenSet[TokenRef]:
        return frozenset(t.text for t in self._tokens.values() if not t.enabled)

    def add_tokens(self, texts: Iterable[str], source: TokenSource) -> List[TokenRef]:
        """Register several tokens; returns the refs that were new."""
        added = []
        for text in texts:
            if text not in self:
                added.append(self.resolve_or_create(text, source))
        return added

    def collect_from_clusters(self, clusters: Iterable[Cluster]) -> List[TokenRef]:
        """Register the tokens of benign and suspicious reference clusters."""
        added = []
        for cluster in clusters:
            source = REFERENCE_QUALIFIERS.get(cluster.qualifier)
            if source is None:
                continue
            added.extend(self.add_tokens(cluster.tokens, source))
        logger.info(f"{len(added)} tokens collected from reference clusters")
        return added

    def copy(self) -> "Dictionary":
        return Dictionary(self._tokens.values())

    def freeze(self) -> "DictionarySnapshot":
        return DictionarySnapshot(
            tokens=frozenset(self._tokens),
            disabled=self.disabled_tokens(),
        )


@dataclass(frozen=True)
class DictionarySnapshot:
    """Immutable view used by match passes."""
    tokens: FrozenSet[TokenRef]
    disabled: FrozenSet[TokenRef]

    def is_enabled(self, text: str) -> bool:
        return normalize_token(text) not in self.disabled
