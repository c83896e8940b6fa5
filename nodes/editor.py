"""
Split Editor - Reviewer Corrections to a Partition

Pure functions over a Partition. Each returns a new Partition and leaves
its input untouched. Edits that reference a missing split, or a merge
with no neighbour in the requested direction, are no-ops and return the
partition unchanged.
"""

import logging
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Union

from state import Partition, Split
from nodes.partition import round_confidence
from nodes.taxonomy import DocumentTaxonomy, get_default_taxonomy

logger = logging.getLogger(__name__)


class MergeDirection(Enum):
    """Which neighbour a split is merged into."""
    PREV = "prev"
    NEXT = "next"


def change_document_type(
    partition: Partition,
    split_id: str,
    new_type: str,
    taxonomy: Optional[DocumentTaxonomy] = None,
) -> Partition:
    """
    Change the document type of one split.

    The display name is re-derived from the taxonomy; pages, confidence
    and id are unchanged.
    """
    index = partition.index_of(split_id)
    if index is None:
        logger.debug(f"change_document_type: split {split_id} not found")
        return partition

    splits = list(partition.splits)
    splits[index] = splits[index].with_type(new_type, taxonomy or get_default_taxonomy())
    return partition.with_splits(splits)


def remove_split(partition: Partition, split_id: str) -> Partition:
    """
    Remove a split from the partition.

    Its pages are not reassigned and will be absent from all output
    documents.
    """
    index = partition.index_of(split_id)
    if index is None:
        logger.debug(f"remove_split: split {split_id} not found")
        return partition

    removed = partition.splits[index]
    logger.info(f"Removed split {split_id} ({removed.document_type}, pages {list(removed.pages)})")
    return partition.with_splits(s for i, s in enumerate(partition.splits) if i != index)


def merge_adjacent_split(
    partition: Partition,
    split_id: str,
    direction: Union[MergeDirection, str],
) -> Partition:
    """
    Merge a split into its neighbour.

    The merged split keeps the neighbour's id, type, display name and
    thumbnail, so a low-confidence fragment is folded into the neighbouring
    document. Its pages are the sorted union of both splits and its
    confidence is the plain average of the two split confidences. It takes
    the position of whichever of the two came first.

    Args:
        partition: Current partition
        split_id: Split being merged
        direction: "prev" or "next"

    Returns:
        New partition, or the same partition when there is no neighbour

    Raises:
        ValueError: If direction is not "prev" or "next"
    """
    direction = MergeDirection(direction)

    index = partition.index_of(split_id)
    if index is None:
        logger.debug(f"merge_adjacent_split: split {split_id} not found")
        return partition

    target_index = index - 1 if direction is MergeDirection.PREV else index + 1
    if target_index < 0 or target_index >= len(partition):
        return partition

    current = partition.splits[index]
    target = partition.splits[target_index]

    merged = Split(
        id=target.id,
        document_type=target.document_type,
        document_type_name=target.document_type_name,
        pages=tuple(sorted(set(current.pages) | set(target.pages))),
        confidence=round_confidence([current.confidence, target.confidence]),
        thumbnail=target.thumbnail,
    )

    insert_at = min(index, target_index)
    splits = [s for i, s in enumerate(partition.splits) if i not in (index, target_index)]
    splits.insert(insert_at, merged)

    logger.info(
        f"Merged split {current.id} into {target.id} ({target.document_type}), "
        f"pages {list(merged.pages)}"
    )
    return partition.with_splits(splits)


# ============================================================================
# Serialised Edits
# ============================================================================

def apply_edit(
    partition: Partition,
    edit: Dict[str, Any],
    taxonomy: Optional[DocumentTaxonomy] = None,
) -> Partition:
    """
    Apply one serialised edit, as queued by the review UI.

    Supported shapes:
        {"action": "change_type", "split_id": ..., "document_type": ...}
        {"action": "remove", "split_id": ...}
        {"action": "merge", "split_id": ..., "direction": "prev" | "next"}
    """
    action = edit.get("action")
    split_id = edit.get("split_id", "")

    if action == "change_type":
        document_type = edit["document_type"]
        if document_type not in (taxonomy or get_default_taxonomy()):
            raise ValueError(f"Unknown document type: {document_type!r}")
        return change_document_type(partition, split_id, document_type, taxonomy)
    if action == "remove":
        return remove_split(partition, split_id)
    if action == "merge":
        return merge_adjacent_split(partition, split_id, edit.get("direction", ""))

    raise ValueError(f"Unknown edit action: {action!r}")


def apply_edits(
    partition: Partition,
    edits: Iterable[Dict[str, Any]],
    taxonomy: Optional[DocumentTaxonomy] = None,
) -> Partition:
    """Apply edits in order."""
    for edit in edits:
        partition = apply_edit(partition, edit, taxonomy)
    return partition
