"""
Threat description documents

Pydantic models for the documents labels are loaded from and exported to.
Files are YAML or JSON (PyYAML reads both) and may hold:
- a single description mapping
- a list of description mappings
- a bundle mapping {Description: ..., Labels: [...]} as written by export
"""
import logging
from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from labeler.core.errors import DocumentError
from labeler.core.label import Label

logger = logging.getLogger(__name__)


class ThreatDescription(BaseModel):
    """One label as written in a threat description document"""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., alias="Name", description="Unique label name")
    description: str = Field(default="", alias="Description")
    references: List[str] = Field(default_factory=list, alias="References")
    samples: List[str] = Field(default_factory=list, alias="Samples", description="Raw samples (provenance)")
    keywords: List[List[str]] = Field(
        default_factory=list,
        alias="Keywords",
        description="Each inner list is one ordered keyword"
    )
    signatures: List[str] = Field(default_factory=list, alias="Signature", description="Regex patterns")
    disabled_tokens: List[str] = Field(
        default_factory=list,
        alias="DisabledTokens",
        description="Tokens disabled for this label only"
    )

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('Name cannot be empty')
        return v

    @field_validator('description', mode='before')
    @classmethod
    def none_to_empty_string(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator('references', 'samples', 'keywords', 'signatures', 'disabled_tokens', mode='before')
    @classmethod
    def none_to_empty_list(cls, v: Any) -> Any:
        return [] if v is None else v

    @classmethod
    def from_label(cls, label: Label) -> "ThreatDescription":
        return cls(
            name=label.name,
            description=label.description,
            references=list(label.references),
            samples=list(label.samples),
            keywords=[list(kw.tokens) for kw in label.keywords],
            signatures=[sig.pattern for sig in label.signatures],
            disabled_tokens=sorted(label.disabled_tokens),
        )

    def to_label(self, label_id: int, max_signature_length: int) -> Label:
        return Label.create(
            name=self.name,
            description=self.description,
            references=self.references,
            samples=self.samples,
            keyword_groups=self.keywords,
            signatures=self.signatures,
            label_id=label_id,
            disabled_tokens=self.disabled_tokens,
            max_signature_length=max_signature_length,
        )

    def to_document(self) -> dict:
        data = self.model_dump(by_alias=True)
        if not data['DisabledTokens']:
            del data['DisabledTokens']
        return data


class ThreatBundle(BaseModel):
    """Several labels with an optional bundle description (export format)"""
    model_config = ConfigDict(populate_by_name=True)

    description: Optional[str] = Field(default=None, alias="Description")
    labels: List[ThreatDescription] = Field(default_factory=list, alias="Labels")

    def to_document(self) -> dict:
        data = {}
        if self.description:
            data['Description'] = self.description
        data['Labels'] = [label.to_document() for label in self.labels]
        return data


def parse_threat_descriptions(data: Any, source: str = "<document>") -> List[ThreatDescription]:
    """
    Validate already-parsed document data.

    Raises:
        DocumentError: unsupported shape or invalid fields
    """
    try:
        if isinstance(data, dict) and 'Labels' in data:
            return ThreatBundle.model_validate(data).labels
        if isinstance(data, dict):
            return [ThreatDescription.model_validate(data)]
        if isinstance(data, list):
            return [ThreatDescription.model_validate(item) for item in data]
    except ValidationError as e:
        raise DocumentError(f"invalid threat description in {source}: {e}") from e

    raise DocumentError(f"{source}: expected a mapping or a list of mappings")


def read_threat_descriptions(path: str) -> List[ThreatDescription]:
    """Read and validate one YAML/JSON threat description file."""
    file_path = Path(path)
    try:
        with open(file_path, encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise DocumentError(f"cannot read {path}: {e}") from e

    descriptions = parse_threat_descriptions(data, source=str(path))
    logger.info(f"{path}: {len(descriptions)} threat description(s)")
    return descriptions


def render_bundle(labels: List[Label], description: Optional[str] = None) -> str:
    bundle = ThreatBundle(
        description=description,
        labels=[ThreatDescription.from_label(label) for label in labels],
    )
    return yaml.safe_dump(
        bundle.to_document(),
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
        width=120,
    )
