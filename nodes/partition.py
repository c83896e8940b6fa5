"""
Partition Builder - Grouping Classified Pages into Documents

Turns a flat sequence of per-page classifications into an ordered
partition of splits, one per contiguous run of same-type pages.

When the classification oracle already suggested a grouping, that
grouping is used as long as it is well formed, with blank pages allowed
to sit outside every group. Otherwise the builder derives its own
grouping from the per-page types.
"""

import logging
import math
import uuid
from typing import Callable, Iterable, List, Optional, Sequence

from state import DocumentGroupDict, PageClassification, Partition, Split
from nodes.taxonomy import OTHER_TYPE, DocumentTaxonomy, get_default_taxonomy
from nodes.blank_detector import is_blank

logger = logging.getLogger(__name__)


# Confidence assigned to pages the oracle did not place in any group
DEFAULT_PAGE_CONFIDENCE = 50

IdFactory = Callable[[], str]


def new_split_id() -> str:
    """Generate a stable split id that does not depend on position."""
    return f"split-{uuid.uuid4().hex[:12]}"


def round_confidence(values: Iterable[float]) -> int:
    """
    Mean of the given confidences, rounded to the nearest integer.

    Halves round up (70.5 -> 71), matching how the review UI displays them.
    """
    values = list(values)
    if not values:
        return 0
    return int(math.floor(sum(values) / len(values) + 0.5))


def build_partition(
    classifications: Sequence[PageClassification],
    taxonomy: Optional[DocumentTaxonomy] = None,
    id_factory: Optional[IdFactory] = None,
) -> Partition:
    """
    Group classified pages into contiguous same-type splits.

    A new split starts at the first page and whenever a page's type
    differs from the previous page's. Runs of the same type separated
    by another type stay separate.

    Args:
        classifications: One entry per source page
        taxonomy: Document taxonomy used for display names
        id_factory: Generates split ids (defaults to uuid based ids)

    Returns:
        Partition covering every page exactly once
    """
    taxonomy = taxonomy or get_default_taxonomy()
    id_factory = id_factory or new_split_id

    if not classifications:
        return Partition(splits=(), total_pages=0)

    ordered = sorted(classifications, key=lambda c: c.page_number)

    runs: List[List[PageClassification]] = []
    for page in ordered:
        if runs and runs[-1][-1].document_type == page.document_type:
            runs[-1].append(page)
        else:
            runs.append([page])

    splits = [
        Split.create(
            split_id=id_factory(),
            document_type=run[0].document_type,
            pages=[p.page_number for p in run],
            confidence=round_confidence(p.confidence for p in run),
            taxonomy=taxonomy,
            thumbnail=run[0].thumbnail,
        )
        for run in runs
    ]

    logger.info(
        f"Built partition: {len(ordered)} pages -> {len(splits)} split(s) "
        f"[{', '.join(f'{s.document_type}({s.pages[0]}-{s.pages[-1]})' for s in splits)}]"
    )

    return Partition(splits=tuple(splits), total_pages=len(ordered))


def classifications_from_groups(
    groups: Sequence[DocumentGroupDict],
    page_texts: Sequence[str],
    total_pages: int,
) -> List[PageClassification]:
    """
    Derive per-page classifications from an oracle grouping.

    Each page takes the type and confidence of the first group that
    contains it; pages in no group become "other".
    """
    classifications = []
    for page_number in range(1, total_pages + 1):
        group = next(
            (g for g in groups if page_number in (g.get("pages") or [])),
            None,
        )
        classifications.append(PageClassification(
            page_number=page_number,
            document_type=(group or {}).get("document_type") or OTHER_TYPE,
            confidence=int((group or {}).get("confidence") or DEFAULT_PAGE_CONFIDENCE),
            raw_text=page_texts[page_number - 1] if page_number - 1 < len(page_texts) else "",
        ))
    return classifications


def _uncovered_pages(groups: Sequence[DocumentGroupDict], total_pages: int) -> Optional[List[int]]:
    """
    Pages that no group covers.

    Returns None when the groups are unusable: missing, empty, out of
    range, or placing a page in more than one group.
    """
    if not groups:
        return None

    seen: List[int] = []
    for group in groups:
        pages = group.get("pages") or []
        if not pages:
            return None
        if any(not isinstance(p, int) or p < 1 or p > total_pages for p in pages):
            return None
        seen.extend(set(pages))

    if len(seen) != len(set(seen)):
        return None
    return sorted(set(range(1, total_pages + 1)) - set(seen))


def partition_from_groups(
    groups: Sequence[DocumentGroupDict],
    classifications: Sequence[PageClassification],
    taxonomy: Optional[DocumentTaxonomy] = None,
    id_factory: Optional[IdFactory] = None,
) -> Partition:
    """
    Build a partition from the oracle's suggested grouping.

    Blank pages the oracle left out of every group become single-page
    "other" splits at their position. Falls back to build_partition()
    over the per-page types when the grouping is missing or malformed
    (duplicates, out-of-range pages, or non-blank pages left uncovered).

    Args:
        groups: Oracle document groups, in suggested order
        classifications: Per-page classifications for the same source
        taxonomy: Document taxonomy used for display names
        id_factory: Generates split ids

    Returns:
        Partition covering every page exactly once
    """
    taxonomy = taxonomy or get_default_taxonomy()
    id_factory = id_factory or new_split_id
    total_pages = len(classifications)
    by_page = {c.page_number: c for c in classifications}

    uncovered = _uncovered_pages(groups, total_pages)
    if uncovered is None or any(not is_blank(by_page[p].raw_text) for p in uncovered):
        if groups:
            logger.warning(
                "Oracle grouping does not cover the document cleanly, "
                "deriving grouping from per-page types"
            )
        return build_partition(classifications, taxonomy, id_factory)

    splits = []
    for group in groups:
        pages = sorted(set(group["pages"]))
        splits.append(Split.create(
            split_id=id_factory(),
            document_type=group.get("document_type") or OTHER_TYPE,
            pages=pages,
            confidence=int(group.get("confidence") or DEFAULT_PAGE_CONFIDENCE),
            taxonomy=taxonomy,
            thumbnail=by_page[pages[0]].thumbnail,
        ))

    # Each blank gap page goes before the first split that starts after it
    for page_number in uncovered:
        position = next(
            (i for i, s in enumerate(splits) if s.pages[0] > page_number),
            len(splits),
        )
        splits.insert(position, Split.create(
            split_id=id_factory(),
            document_type=OTHER_TYPE,
            pages=[page_number],
            confidence=by_page[page_number].confidence,
            taxonomy=taxonomy,
            thumbnail=by_page[page_number].thumbnail,
        ))

    logger.info(
        f"Using oracle grouping: {total_pages} pages -> {len(splits)} split(s)"
        + (f", {len(uncovered)} blank page(s) outside any group" if uncovered else "")
    )
    return Partition(splits=tuple(splits), total_pages=total_pages)
