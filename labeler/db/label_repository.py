"""
Label Repository

The load/save/export boundary between the labeling engine and SQLite.

- Committed labels and the dictionary are cached in memory and guarded by a
  lock; readers get copies or frozen snapshots, never the live objects.
- save() is the only write path. It replays a session's mutation log onto a
  copy of the committed state, writes the touched rows in one transaction,
  and swaps the in-memory state only after the transaction commits.
- Label ids are assigned here and never reused, even for labels that were
  removed or never saved.
"""
import json
import logging
import sqlite3
import threading
from collections import Counter
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from labeler.core.config import LabelerSettings
from labeler.core.dictionary import Dictionary, Token, TokenSource
from labeler.core.errors import DuplicateNameError, LabelerError, StorageError, UnknownLabel
from labeler.core.label import Keyword, Label, Signature
from labeler.core.matcher import LabelSnapshot
from labeler.core.mutations import WorkingState
from labeler.db.documents import read_threat_descriptions, render_bundle
from labeler.db.utils import get_db_connection, init_database

if TYPE_CHECKING:
    from labeler.core.session import EditSession

logger = logging.getLogger(__name__)


@dataclass
class SaveResult:
    """What a successful save wrote."""
    mutations: int = 0
    labels_written: int = 0
    labels_removed: int = 0
    tokens_written: int = 0

    def to_dict(self) -> dict:
        return {
            'mutations': self.mutations,
            'labels_written': self.labels_written,
            'labels_removed': self.labels_removed,
            'tokens_written': self.tokens_written,
        }


class LabelRepository:
    """
    SQLite-backed store of labels and the global dictionary.

    Usage:
        repository = LabelRepository(settings)
        session = EditSession(repository)
        session.stage_load(["threats.yaml"])
        repository.save(session)
    """

    def __init__(self, settings: Optional[LabelerSettings] = None, db_path: Optional[str] = None):
        settings = settings or LabelerSettings.from_env()
        if db_path is not None:
            settings = replace(settings, db_path=str(db_path))
        self.settings = settings
        self.db_path = settings.db_path

        self._lock = threading.Lock()
        self._labels: Dict[int, Label] = {}
        self._dictionary = Dictionary()
        self._next_id = 1

        init_database(self.db_path)
        self.reload()

    # Reading

    def reload(self):
        """Replace the in-memory cache with what is stored."""
        with get_db_connection(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM labels ORDER BY id")
            labels = {row['id']: self._row_to_label(row) for row in cursor.fetchall()}

            cursor.execute("SELECT token, enabled, source FROM dictionary_tokens")
            dictionary = Dictionary(
                Token(text=row['token'], enabled=bool(row['enabled']), source=TokenSource(row['source']))
                for row in cursor.fetchall()
            )

            cursor.execute("SELECT value FROM db_metadata WHERE key = 'next_label_id'")
            row = cursor.fetchone()
            stored_next = int(row['value']) if row else 1

        with self._lock:
            self._labels = labels
            self._dictionary = dictionary
            self._next_id = max([stored_next] + [label_id + 1 for label_id in labels])

        logger.info(f"Loaded {len(labels)} labels and {len(dictionary)} tokens from {self.db_path}")

    @staticmethod
    def _row_to_label(row: sqlite3.Row) -> Label:
        return Label(
            name=row['name'],
            label_id=row['id'],
            description=row['description'],
            references=json.loads(row['label_references']),
            samples=json.loads(row['samples']),
            keywords=[Keyword(tuple(tokens)) for tokens in json.loads(row['keywords'])],
            signatures=[Signature(pattern) for pattern in json.loads(row['signatures'])],
            disabled_tokens=set(json.loads(row['disabled_tokens'])),
        )

    def working_state(self) -> WorkingState:
        """Mutable copy of the committed state (base for previews and saves)."""
        with self._lock:
            return self._working_state()

    def _working_state(self) -> WorkingState:
        return WorkingState(
            labels={label_id: label.copy() for label_id, label in self._labels.items()},
            dictionary=self._dictionary.copy(),
            max_signature_length=self.settings.max_signature_length,
        )

    def snapshot(self) -> LabelSnapshot:
        """Immutable view for a match pass; later saves do not affect it."""
        with self._lock:
            return LabelSnapshot(
                labels=tuple(self._labels[label_id].freeze() for label_id in sorted(self._labels)),
                dictionary=self._dictionary.freeze(),
            )

    def labels(self) -> List[Label]:
        with self._lock:
            return [self._labels[label_id].copy() for label_id in sorted(self._labels)]

    def get_label(self, label_id: int) -> Label:
        with self._lock:
            if label_id not in self._labels:
                raise UnknownLabel(f"#{label_id}")
            return self._labels[label_id].copy()

    def find_label(self, name: str) -> Optional[Label]:
        with self._lock:
            for label in self._labels.values():
                if label.name == name:
                    return label.copy()
        return None

    def dictionary(self) -> Dictionary:
        with self._lock:
            return self._dictionary.copy()

    def reserve_label_id(self) -> int:
        with self._lock:
            label_id = self._next_id
            self._next_id += 1
            return label_id

    # Loading

    def load_threat_descriptions(
        self,
        paths: Iterable[str],
        force_overwrite: Optional[bool] = None,
        existing: Optional[Dict[str, int]] = None
    ) -> List[Label]:
        """
        Parse threat description documents into labels with reserved ids.

        Nothing is written here; the caller stages the labels and saves.
        The batch is all or nothing: any unreadable document or name
        collision rejects every label in it.

        Args:
            paths: YAML/JSON documents
            force_overwrite: Reuse the id of an existing label with the same
                name instead of failing (default from settings)
            existing: name -> id of labels to check against (default: committed labels)

        Returns:
            Labels in document order

        Raises:
            DocumentError: unreadable or invalid document
            DuplicateNameError: name repeated in the batch, or already present
            InvalidRegex: a signature in a document is rejected
        """
        if force_overwrite is None:
            force_overwrite = self.settings.force_overwrite
        if existing is None:
            with self._lock:
                existing = {label.name: label_id for label_id, label in self._labels.items()}

        descriptions = []
        for path in paths:
            descriptions.extend(read_threat_descriptions(path))

        counts = Counter(d.name for d in descriptions)
        repeated = [name for name, count in counts.items() if count > 1]
        if repeated:
            raise DuplicateNameError(repeated)

        collisions = [d.name for d in descriptions if d.name in existing]
        if collisions and not force_overwrite:
            raise DuplicateNameError(collisions)

        labels = [d.to_label(None, self.settings.max_signature_length) for d in descriptions]
        for label in labels:
            if label.name in existing:
                label.label_id = existing[label.name]
            else:
                label.label_id = self.reserve_label_id()

        if collisions:
            logger.warning(f"Overwriting {len(collisions)} existing label(s): {', '.join(collisions)}")
        logger.info(f"Parsed {len(labels)} threat descriptions")
        return labels

    # Export

    def export(self, label_ids: Optional[Iterable[int]] = None, description: Optional[str] = None) -> str:
        """
        Render committed labels as a YAML bundle document.

        Args:
            label_ids: Labels to export (None = all)
            description: Optional bundle description

        Raises:
            UnknownLabel: an id is not stored
        """
        with self._lock:
            if label_ids is None:
                selected = [self._labels[label_id] for label_id in sorted(self._labels)]
            else:
                selected = []
                for label_id in label_ids:
                    if label_id not in self._labels:
                        raise UnknownLabel(f"#{label_id}")
                    selected.append(self._labels[label_id])
            return render_bundle(selected, description)

    def export_to_file(
        self,
        path: str,
        label_ids: Optional[Iterable[int]] = None,
        description: Optional[str] = None
    ) -> Path:
        document = self.export(label_ids, description)
        output = Path(path)
        try:
            output.write_text(document, encoding='utf-8')
        except OSError as e:
            raise StorageError(f"cannot write {path}: {e}", cause=e) from e
        logger.info(f"Exported labels to {output}")
        return output

    # Saving

    def save(self, session: "EditSession") -> SaveResult:
        """
        Commit the session's log atomically, then clear the session.

        Raises:
            StorageError: the log no longer applies or the write failed;
                nothing was persisted and the session keeps its changes
        """
        mutations = session.pending()
        if not mutations:
            logger.info("Nothing to save")
            return SaveResult()

        with self._lock:
            state = self._working_state()
            try:
                for mutation in mutations:
                    mutation.apply(state)
            except LabelerError as e:
                raise StorageError(f"pending changes no longer apply: {e}", cause=e) from e

            try:
                self._write(state)
            except sqlite3.Error as e:
                logger.error(f"Save failed, rolled back {len(mutations)} change(s): {e}")
                raise StorageError(f"save failed, nothing was written: {e}", cause=e) from e

            self._labels = {label_id: label.copy() for label_id, label in state.labels.items()}
            self._dictionary = state.dictionary

        result = SaveResult(
            mutations=len(mutations),
            labels_written=len(state.dirty_labels),
            labels_removed=len(state.removed_labels),
            tokens_written=len(state.dirty_tokens),
        )
        logger.info(f"Saved {result.mutations} change(s): {result.to_dict()}")
        session.discard()
        return result

    def _write(self, state: WorkingState):
        with get_db_connection(self.db_path) as conn:
            cursor = conn.cursor()
            for label_id in sorted(state.removed_labels):
                cursor.execute("DELETE FROM labels WHERE id = ?", (label_id,))

            for label_id in sorted(state.dirty_labels):
                self._write_label(cursor, state.labels[label_id])

            for ref in sorted(state.dirty_tokens):
                token = state.dictionary.get(ref)
                cursor.execute("""
                    INSERT INTO dictionary_tokens (token, enabled, source)
                    VALUES (?, ?, ?)
                    ON CONFLICT(token) DO UPDATE SET enabled = excluded.enabled
                """, (token.text, int(token.enabled), token.source.value))

            timestamp = datetime.now().isoformat(timespec='seconds')
            # ids reserved by discarded loads stay burned
            cursor.execute("""
                INSERT OR REPLACE INTO db_metadata (key, value, updated_at)
                VALUES ('next_label_id', ?, ?)
            """, (str(self._next_id), timestamp))
            cursor.execute("""
                INSERT OR REPLACE INTO db_metadata (key, value, updated_at)
                VALUES ('last_save', ?, ?)
            """, (timestamp, timestamp))

    def _write_label(self, cursor: sqlite3.Cursor, label: Label):
        cursor.execute("""
            INSERT INTO labels (
                id, name, description, label_references, samples,
                keywords, signatures, disabled_tokens
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                description = excluded.description,
                label_references = excluded.label_references,
                samples = excluded.samples,
                keywords = excluded.keywords,
                signatures = excluded.signatures,
                disabled_tokens = excluded.disabled_tokens,
                updated_at = CURRENT_TIMESTAMP
        """, (
            label.label_id,
            label.name,
            label.description,
            json.dumps(label.references),
            json.dumps(label.samples),
            json.dumps([list(kw.tokens) for kw in label.keywords]),
            json.dumps([sig.pattern for sig in label.signatures]),
            json.dumps(sorted(label.disabled_tokens)),
        ))
