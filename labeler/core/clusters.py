"""
Cluster input model

Clusters are produced by the external clustering engine. The labeler only
consumes each cluster's ordered token sequence, its raw text surface and the
upstream qualifier.
"""
import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml

from labeler.core.errors import DocumentError
from labeler.core.tokenizer import extract_tokens_from_samples

logger = logging.getLogger(__name__)


class Qualifier(str, Enum):
    """Upstream suspiciousness verdict for a cluster."""
    BENIGN = "benign"
    UNKNOWN = "unknown"
    SUSPICIOUS = "suspicious"
    MIXED = "mixed"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Qualifier":
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise DocumentError(f"unknown qualifier: {value!r}")


@dataclass(frozen=True)
class Cluster:
    """A cluster's observable surface."""
    cluster_id: int
    tokens: Tuple[str, ...]
    text: str = ""
    qualifier: Qualifier = Qualifier.UNKNOWN
    size: int = 0

    @classmethod
    def from_samples(
        cls,
        cluster_id: int,
        samples: List[str],
        qualifier: Qualifier = Qualifier.UNKNOWN,
        tokens: Optional[List[str]] = None
    ) -> "Cluster":
        """
        Build a cluster from its raw member samples.

        Tokens are extracted from the samples unless given explicitly.
        The raw text surface is the samples joined by newlines.
        """
        if tokens is None:
            tokens = extract_tokens_from_samples(samples)
        return cls(
            cluster_id=cluster_id,
            tokens=tuple(tokens),
            text="\n".join(samples),
            qualifier=qualifier,
            size=len(samples),
        )


def parse_clusters(data: Dict) -> List[Cluster]:
    """
    Parse a cluster document.

    Expected shape:
        {"clusters": [{"cluster_id": 1, "qualifier": "benign",
                       "samples": ["..."], "tokens": ["..."]}]}
    """
    if not isinstance(data, dict) or not isinstance(data.get('clusters'), list):
        raise DocumentError("cluster document must contain a 'clusters' list")

    clusters = []
    seen = set()
    for entry in data['clusters']:
        if not isinstance(entry, dict) or 'cluster_id' not in entry:
            raise DocumentError(f"cluster entry without cluster_id: {entry!r}")

        try:
            cluster_id = int(entry['cluster_id'])
        except (TypeError, ValueError):
            raise DocumentError(f"invalid cluster_id: {entry['cluster_id']!r}")
        if cluster_id in seen:
            raise DocumentError(f"duplicate cluster_id: {cluster_id}")
        seen.add(cluster_id)

        samples = [str(s) for s in entry.get('samples') or []]
        tokens = entry.get('tokens')
        if tokens is not None:
            tokens = [str(t) for t in tokens]

        clusters.append(Cluster.from_samples(
            cluster_id,
            samples,
            qualifier=Qualifier.parse(entry.get('qualifier')),
            tokens=tokens,
        ))
    return clusters


def load_clusters(path: str) -> List[Cluster]:
    """Load clusters from a JSON or YAML file."""
    file_path = Path(path)
    try:
        with open(file_path) as f:
            if file_path.suffix.lower() == '.json':
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise DocumentError(f"cannot read clusters from {path}: {e}") from e

    clusters = parse_clusters(data)
    logger.info(f"{path} loaded: {len(clusters)} clusters")
    return clusters
