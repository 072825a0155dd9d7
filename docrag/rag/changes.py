"""Change detection between stored document records and a source listing.

A document is reprocessed when it is new or its version token differs from
the stored one; it is deleted when the source no longer lists it. Versions are
compared for equality only. A document whose content changes without a new
version token is not detected.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, Set, Tuple
import structlog

from docrag.rag.models import DocumentRecord

logger = structlog.get_logger()


@dataclass
class ChangeSet:
    """Classification of a source's documents against stored records."""

    new: Set[str] = field(default_factory=set)
    modified: Set[str] = field(default_factory=set)
    unchanged: Set[str] = field(default_factory=set)
    to_delete: Set[str] = field(default_factory=set)

    @property
    def to_process(self) -> Set[str]:
        """Documents that need (re)processing: new or modified."""
        return self.new | self.modified

    @property
    def is_empty(self) -> bool:
        return not (self.new or self.modified or self.to_delete)


def classify(
    existing: Iterable[DocumentRecord],
    current: Iterable[Tuple[str, str]],
) -> ChangeSet:
    """Compare stored document records with the current source listing.

    Args:
        existing: Document records previously stored for the source
        current: (document_id, version) pairs the source lists now

    Returns:
        ChangeSet with new, modified, unchanged and to_delete document ids
    """
    known_versions: Dict[str, str] = {
        record.document_id: record.version for record in existing
    }

    changes = ChangeSet()
    seen: Set[str] = set()

    for document_id, version in current:
        seen.add(document_id)
        known = known_versions.get(document_id)

        if known is None:
            changes.new.add(document_id)
        elif known != version:
            changes.modified.add(document_id)
        else:
            changes.unchanged.add(document_id)

    changes.to_delete = set(known_versions) - seen

    logger.info(
        "changes_classified",
        new=len(changes.new),
        modified=len(changes.modified),
        unchanged=len(changes.unchanged),
        deleted=len(changes.to_delete),
    )

    return changes
