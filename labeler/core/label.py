"""
Label entity

A label is one threat classification: provenance (description, references,
samples) plus matching rules (keywords, signatures) and a per-label set of
disabled tokens layered over the global dictionary.

Keywords and signatures are addressed by content. The 1-based display index
shown at the console ("pattern-no") is derived from list position on read
and changes after every mutation.
"""
import copy
from dataclasses import dataclass, field
from functools import cached_property
from typing import FrozenSet, Iterable, List, Optional, Set, Tuple

import re2

from labeler.core.errors import IndexOutOfRange, InvalidKeyword, InvalidRegex
from labeler.core.tokenizer import extract_tokens_from_samples

KEYWORD_DELIMITER = ','

DEFAULT_MAX_SIGNATURE_LENGTH = 1024


@dataclass(frozen=True)
class Keyword:
    """Ordered phrase of tokens. Identity is the token tuple."""
    tokens: Tuple[str, ...]

    @classmethod
    def parse(cls, phrase: str) -> "Keyword":
        """
        Split a comma-delimited phrase into tokens.

        Segments are not trimmed: "SSL_CLIENT_VERIFY: SUCCESS,?action=file_download"
        yields ("SSL_CLIENT_VERIFY: SUCCESS", "?action=file_download").

        Raises:
            InvalidKeyword: empty phrase or empty segment
        """
        if not phrase:
            raise InvalidKeyword("keyword phrase is empty")
        segments = phrase.split(KEYWORD_DELIMITER)
        if any(s == '' for s in segments):
            raise InvalidKeyword(f"keyword {phrase!r} has an empty segment")
        return cls(tuple(segments))

    def __str__(self):
        return KEYWORD_DELIMITER.join(self.tokens)


def compile_signature(pattern: str, max_length: int = DEFAULT_MAX_SIGNATURE_LENGTH):
    """
    Validate and compile a signature pattern.

    Signatures run on RE2, so matching time is linear in the text length
    whatever the pattern. Backreferences and lookaround are not supported.

    Raises:
        InvalidRegex: empty, too long, or rejected by RE2
    """
    if not pattern:
        raise InvalidRegex(pattern, "empty pattern")
    if len(pattern) > max_length:
        raise InvalidRegex(pattern, f"pattern longer than {max_length} characters")
    try:
        return re2.compile(pattern)
    except re2.error as e:
        raise InvalidRegex(pattern, str(e)) from e


@dataclass(frozen=True)
class Signature:
    """Regular expression rule. Identity is the pattern text."""
    pattern: str

    @cached_property
    def regex(self):
        return re2.compile(self.pattern)

    def search(self, text: str) -> bool:
        return self.regex.search(text) is not None

    def __str__(self):
        return self.pattern


def _resolve_index(kind: str, items: list, display_index: int) -> int:
    if not 1 <= display_index <= len(items):
        raise IndexOutOfRange(kind, display_index, len(items))
    return display_index - 1


@dataclass
class Label:
    """One threat classification and its matching rules."""
    name: str
    label_id: Optional[int] = None
    description: str = ""
    references: List[str] = field(default_factory=list)
    samples: List[str] = field(default_factory=list)
    keywords: List[Keyword] = field(default_factory=list)
    signatures: List[Signature] = field(default_factory=list)
    disabled_tokens: Set[str] = field(default_factory=set)

    @classmethod
    def create(
        cls,
        name: str,
        description: str = "",
        references: Optional[Iterable[str]] = None,
        samples: Optional[Iterable[str]] = None,
        keyword_groups: Optional[Iterable[Iterable[str]]] = None,
        signatures: Optional[Iterable[str]] = None,
        label_id: Optional[int] = None,
        disabled_tokens: Optional[Iterable[str]] = None,
        max_signature_length: int = DEFAULT_MAX_SIGNATURE_LENGTH
    ) -> "Label":
        """
        Build a label from threat description fields.

        Keyword groups are token lists used as-is. Signatures are validated.
        Duplicate keywords and signatures collapse to one entry.
        """
        label = cls(
            name=name,
            label_id=label_id,
            description=description or "",
            references=list(references or []),
            samples=list(samples or []),
            disabled_tokens=set(disabled_tokens or []),
        )
        for group in keyword_groups or []:
            label.add_keyword_tokens(group)
        for pattern in signatures or []:
            label.add_signature(pattern, max_signature_length)
        return label

    # Keywords

    def add_keyword(self, phrase: str) -> Keyword:
        """Add a comma-delimited phrase (no trimming). Returns its identity."""
        return self._add_keyword(Keyword.parse(phrase))

    def add_keyword_tokens(self, tokens: Iterable[str]) -> Keyword:
        return self._add_keyword(Keyword(tuple(tokens)))

    def _add_keyword(self, keyword: Keyword) -> Keyword:
        if keyword not in self.keywords:
            self.keywords.append(keyword)
        return keyword

    def keyword_at(self, display_index: int) -> Keyword:
        return self.keywords[_resolve_index("keyword", self.keywords, display_index)]

    def remove_keyword(self, display_index: int) -> Keyword:
        """Remove by display index; later keywords shift down by one."""
        return self.keywords.pop(_resolve_index("keyword", self.keywords, display_index))

    def discard_keyword(self, keyword: Keyword) -> bool:
        """Remove by identity. Returns False if it was not present."""
        if keyword in self.keywords:
            self.keywords.remove(keyword)
            return True
        return False

    # Signatures

    def add_signature(self, pattern: str, max_length: int = DEFAULT_MAX_SIGNATURE_LENGTH) -> Signature:
        compile_signature(pattern, max_length)
        signature = Signature(pattern)
        if signature not in self.signatures:
            self.signatures.append(signature)
        return signature

    def signature_at(self, display_index: int) -> Signature:
        return self.signatures[_resolve_index("signature", self.signatures, display_index)]

    def remove_signature(self, display_index: int) -> Signature:
        return self.signatures.pop(_resolve_index("signature", self.signatures, display_index))

    def discard_signature(self, signature: Signature) -> bool:
        if signature in self.signatures:
            self.signatures.remove(signature)
            return True
        return False

    # Token overrides

    def set_token_override(self, token: str, enabled: bool) -> bool:
        """Enable/disable a token for this label only. Returns True if changed."""
        if enabled:
            if token in self.disabled_tokens:
                self.disabled_tokens.discard(token)
                return True
            return False
        if token in self.disabled_tokens:
            return False
        self.disabled_tokens.add(token)
        return True

    def is_token_enabled(self, token: str) -> bool:
        return token not in self.disabled_tokens

    def tokens(self) -> Set[str]:
        """Tokens derived from samples plus every keyword token."""
        found = set(extract_tokens_from_samples(self.samples))
        for keyword in self.keywords:
            found.update(keyword.tokens)
        return found

    def copy(self) -> "Label":
        return copy.deepcopy(self)

    def freeze(self) -> "FrozenLabel":
        return FrozenLabel(
            label_id=self.label_id,
            name=self.name,
            keywords=tuple(self.keywords),
            signatures=tuple(self.signatures),
            disabled_tokens=frozenset(self.disabled_tokens),
        )

    def describe(self) -> str:
        """Console rendering with 1-based keyword/signature numbers."""
        lines = [f"#{self.label_id} {self.name}"]
        if self.description:
            lines.append(f"Description:\n\t{self.description}")
        if self.references:
            lines.append("References:")
            lines.extend(f"\t{r}" for r in self.references)
        lines.append("Keywords:")
        lines.extend(f"\t[{i}] {kw}" for i, kw in enumerate(self.keywords, 1))
        lines.append("Signatures:")
        lines.extend(f"\t[{i}] {sig}" for i, sig in enumerate(self.signatures, 1))
        if self.disabled_tokens:
            lines.append(f"Disabled tokens: {', '.join(sorted(self.disabled_tokens))}")
        return "\n".join(lines)


@dataclass(frozen=True)
class FrozenLabel:
    """Read-only label used inside match snapshots."""
    label_id: Optional[int]
    name: str
    keywords: Tuple[Keyword, ...]
    signatures: Tuple[Signature, ...]
    disabled_tokens: FrozenSet[str]

    def is_token_enabled(self, token: str) -> bool:
        return token not in self.disabled_tokens
