"""
Pytest configuration and shared fixtures

This module provides fixtures for all test categories including:
- Sample threat descriptions and threat description files
- Sample clusters and cluster files
- Settings pointing at a temporary SQLite database
- Empty and pre-loaded label repositories, and an edit session over them
"""
import pytest
import yaml
from pathlib import Path
from typing import Dict, List

from labeler.core.clusters import Cluster, Qualifier
from labeler.core.config import LabelerSettings
from labeler.core.session import EditSession
from labeler.db.label_repository import LabelRepository


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

@pytest.fixture
def zmeu_description() -> Dict:
    """Threat description of the ZmEu scanner"""
    return {
        "Name": "ZmEu scanner",
        "Description": "Vulnerability scanner probing for phpMyAdmin setup scripts",
        "References": ["https://www.webarxsecurity.com/zmeu-scanner/"],
        "Samples": ["GET /scripts/setup.php HTTP/1.1 ZmEu"],
        "Keywords": [["scripts", "setup.php", "ZmEu"], ["ZmEu"]],
        "Signature": [r"w00tw00t\.at\.ISC\.SANS"],
    }


@pytest.fixture
def pma_description() -> Dict:
    """Threat description of a phpMyAdmin probe"""
    return {
        "Name": "phpMyAdmin probe",
        "Description": "Requests for phpMyAdmin entry points",
        "References": [],
        "Samples": ["GET /phpmyadmin/index.php HTTP/1.1"],
        "Keywords": [["phpmyadmin", "index.php"]],
        "Signature": [r"/pma/[a-z]+\.php"],
    }


@pytest.fixture
def download_description() -> Dict:
    """Threat description whose keyword tokens contain spaces"""
    return {
        "Name": "Sensitive file download",
        "Description": "Client-certificate authenticated file download",
        "References": None,
        "Samples": ["SSL_CLIENT_VERIFY: SUCCESS ?action=file_download"],
        "Keywords": [["SSL_CLIENT_VERIFY: SUCCESS", "?action=file_download"]],
        "Signature": None,
    }


@pytest.fixture
def threat_descriptions(zmeu_description, pma_description, download_description) -> List[Dict]:
    return [zmeu_description, pma_description, download_description]


@pytest.fixture
def threat_file(tmp_path, threat_descriptions) -> Path:
    """YAML document holding a list of three threat descriptions"""
    path = tmp_path / "threats.yaml"
    path.write_text(yaml.safe_dump(threat_descriptions, sort_keys=False))
    return path


@pytest.fixture
def sample_clusters() -> List[Cluster]:
    """
    Clusters 1 and 2 qualify for the ZmEu label, 3 has the keyword in the
    wrong order, 4 qualifies for the phpMyAdmin label via its signature.
    """
    return [
        Cluster(1, ("GET", "scripts", "junk", "setup.php", "ZmEu"),
                "GET /scripts/junk/setup.php ZmEu", Qualifier.SUSPICIOUS, 1),
        Cluster(2, ("GET", "ZmEu"), "GET / ZmEu", Qualifier.UNKNOWN, 1),
        Cluster(3, ("GET", "setup.php", "scripts"), "GET /setup.php?scripts", Qualifier.BENIGN, 1),
        Cluster.from_samples(4, ["GET /pma/login.php HTTP/1.1"], Qualifier.UNKNOWN),
    ]


@pytest.fixture
def cluster_file(tmp_path, sample_clusters) -> Path:
    path = tmp_path / "clusters.yaml"
    data = {
        "clusters": [
            {
                "cluster_id": c.cluster_id,
                "qualifier": c.qualifier.value,
                "tokens": list(c.tokens),
                "samples": c.text.split("\n"),
            }
            for c in sample_clusters
        ]
    }
    path.write_text(yaml.safe_dump(data, sort_keys=False))
    return path


# =============================================================================
# REPOSITORY FIXTURES
# =============================================================================

@pytest.fixture
def settings(tmp_path) -> LabelerSettings:
    return LabelerSettings(db_path=str(tmp_path / "labels.sqlite"), history_file=None)


@pytest.fixture
def repository(settings) -> LabelRepository:
    """Empty repository on a temporary database"""
    return LabelRepository(settings)


@pytest.fixture
def loaded_repository(repository, threat_file) -> LabelRepository:
    """Repository with the three sample labels saved as #1, #2, #3"""
    session = EditSession(repository)
    session.stage_load([str(threat_file)])
    session.commit()
    return repository


@pytest.fixture
def session(loaded_repository) -> EditSession:
    return EditSession(loaded_repository)


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
