"""
Label Matching Engine

Decides which labels apply to a cluster.

Key Logic (per label, labels are independent):
1. Token filter: a token counts only if enabled globally (dictionary) and for
   the label (no local override). Disabled tokens are removed from both the
   keyword and the cluster token sequence before matching.
2. Keyword match: the keyword's remaining tokens appear in the cluster's
   remaining tokens in the same relative order, not necessarily contiguous.
   A single-token keyword is a containment test. An empty keyword never matches.
3. Signature match: the pattern is found anywhere in the cluster's raw text.
4. The label qualifies if (2) or (3) holds. Ties are kept, never resolved here.

Matching is case-sensitive and read-only; it runs on an immutable snapshot so
a concurrent save cannot change labels in the middle of a pass.
"""
import logging
from bisect import insort
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from labeler.core.clusters import Cluster
from labeler.core.dictionary import DictionarySnapshot, normalize_token
from labeler.core.label import FrozenLabel, Keyword, Signature

logger = logging.getLogger(__name__)

DEFAULT_MAX_MATCH_TEXT_LENGTH = 65536


@dataclass(frozen=True)
class LabelSnapshot:
    """Labels and dictionary state frozen at the start of a match pass."""
    labels: Tuple[FrozenLabel, ...]
    dictionary: DictionarySnapshot

    def label_ids(self) -> List[int]:
        return [label.label_id for label in self.labels]


@dataclass(frozen=True)
class LabelMatch:
    """Why a label qualified for a cluster (empty tuples = did not qualify)."""
    label_id: int
    name: str
    keywords: Tuple[Keyword, ...] = ()
    signatures: Tuple[Signature, ...] = ()

    @property
    def qualified(self) -> bool:
        return bool(self.keywords or self.signatures)


def is_ordered_subsequence(needle: Sequence[str], haystack: Sequence[str]) -> bool:
    """True if every element of needle appears in haystack in the same order."""
    if not needle:
        return False
    if len(needle) == 1:
        return needle[0] in haystack
    it = iter(haystack)
    return all(token in it for token in needle)


def keyword_matches(
    keyword: Keyword,
    tokens: Sequence[str],
    is_enabled: Callable[[str], bool] = lambda _: True
) -> bool:
    """
    Order-preserving subsequence match after disabled-token filtering.

    Args:
        keyword: Keyword to test
        tokens: Cluster's ordered token sequence
        is_enabled: Token filter (global and per-label state combined)

    Returns:
        False for an empty keyword, or one whose tokens are all disabled
    """
    needle = [t for t in keyword.tokens if is_enabled(t)]
    if not needle:
        return False
    haystack = [t for t in tokens if is_enabled(t)]
    return is_ordered_subsequence(needle, haystack)


class LabelMatcher:
    """
    Runs the matching algorithm over a LabelSnapshot.

    Usage:
        matcher = LabelMatcher(repository.snapshot())
        report = matcher.match_clusters(clusters)
    """

    def __init__(
        self,
        snapshot: LabelSnapshot,
        max_text_length: int = DEFAULT_MAX_MATCH_TEXT_LENGTH,
        workers: int = 1
    ):
        self.snapshot = snapshot
        self.max_text_length = max_text_length
        self.workers = max(1, workers)

    def token_filter(self, label: FrozenLabel) -> Callable[[str], bool]:
        disabled_globally = self.snapshot.dictionary.disabled
        disabled_locally = label.disabled_tokens

        def is_enabled(token: str) -> bool:
            ref = normalize_token(token)
            return ref not in disabled_globally and ref not in disabled_locally

        return is_enabled

    def signature_matches(self, signature: Signature, text: str) -> bool:
        return signature.search(text[:self.max_text_length])

    def match_label(self, label: FrozenLabel, cluster: Cluster) -> LabelMatch:
        is_enabled = self.token_filter(label)
        # filter the cluster once per label, not once per keyword
        cluster_tokens = [t for t in cluster.tokens if is_enabled(t)]

        matched_keywords = tuple(
            kw for kw in label.keywords
            if keyword_matches(kw, cluster_tokens, is_enabled)
        )
        matched_signatures = tuple(
            sig for sig in label.signatures
            if self.signature_matches(sig, cluster.text)
        )
        return LabelMatch(
            label_id=label.label_id,
            name=label.name,
            keywords=matched_keywords,
            signatures=matched_signatures,
        )

    def explain_cluster(self, cluster: Cluster) -> List[LabelMatch]:
        """Qualifying labels for one cluster, with the rules that fired."""
        matches = []
        for label in self.snapshot.labels:
            match = self.match_label(label, cluster)
            if match.qualified:
                matches.append(match)
        return matches

    def match_cluster(self, cluster: Cluster) -> FrozenSet[int]:
        return frozenset(m.label_id for m in self.explain_cluster(cluster))

    def match_clusters(self, clusters: Iterable[Cluster]) -> "MatchReport":
        clusters = list(clusters)
        if self.workers > 1 and len(clusters) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as executor:
                results = list(executor.map(self.match_cluster, clusters))
        else:
            results = [self.match_cluster(c) for c in clusters]

        report = MatchReport()
        for cluster, label_ids in zip(clusters, results):
            report.add(cluster.cluster_id, label_ids)

        clusters_count, labeled, labels_used = report.statistics()
        logger.info(
            f"match pass: {clusters_count} clusters, {labeled} labeled, "
            f"{labels_used}/{len(self.snapshot.labels)} labels used"
        )
        return report


@dataclass
class MatchReport:
    """Qualifying-label sets per cluster plus the inverse index."""
    labels_by_cluster: Dict[int, FrozenSet[int]] = field(default_factory=dict)
    clusters_by_label: Dict[int, List[int]] = field(default_factory=dict)

    def add(self, cluster_id: int, label_ids: Iterable[int]):
        label_ids = frozenset(label_ids)
        self.labels_by_cluster[cluster_id] = label_ids
        for label_id in label_ids:
            insort(self.clusters_by_label.setdefault(label_id, []), cluster_id)

    def labels_for(self, cluster_id: int) -> FrozenSet[int]:
        return self.labels_by_cluster.get(cluster_id, frozenset())

    def is_labeled(self, cluster_id: int) -> bool:
        return bool(self.labels_for(cluster_id))

    def find_clusters(self, label_id: Optional[int] = None) -> List[int]:
        """Clusters qualified for label_id (None = any label), sorted."""
        if label_id is not None:
            return list(self.clusters_by_label.get(label_id, []))
        found: Set[int] = set()
        for clusters in self.clusters_by_label.values():
            found.update(clusters)
        return sorted(found)

    def statistics(self) -> Tuple[int, int, int]:
        """
        Returns:
            (clusters, labeled clusters, labels with at least one cluster)
        """
        labeled = sum(1 for ids in self.labels_by_cluster.values() if ids)
        return len(self.labels_by_cluster), labeled, len(self.clusters_by_label)
