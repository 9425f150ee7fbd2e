"""
Layout Segmenter — multi-envelope photos
Splits the word annotations of one photo into address blocks (one per
envelope lying side by side) and rebuilds reading order inside each block.

Whole-image OCR text interleaves the lines of envelopes placed next to each
other ("Acme NV   Bakkerij Peeters" on one line), so the split is done on
word geometry before any text parsing.

Thresholds assume a near-horizontal layout; rotated or skewed text is not
corrected.
"""

from __future__ import annotations

import logging
from functools import cmp_to_key
from typing import List, Optional, Sequence, Tuple

from ..ocr_types import TextCluster, WordAnnotation
from ..ocr_utils import describe_boxes, union_bbox

log = logging.getLogger(__name__)

# --- Tunable heuristics ----------------------------------------------------

GAP_RATIO = 0.08     # horizontal gap (fraction of image width) that separates envelopes
ROW_ALIGN_PX = 8     # words whose tops differ by <= this sort as the same row
ROW_BREAK_PX = 12    # a top jump larger than this starts a new row
MIN_CLUSTER_WORDS = 2  # smaller clusters are stray tokens (stamps, barcodes), not addresses


# --- Helpers ---------------------------------------------------------------

def _whole_image(words: Sequence[WordAnnotation], full_text: str) -> List[TextCluster]:
    return [TextCluster(words=tuple(words), text=(full_text or "").strip())]


def _sweep_columns(words: Sequence[WordAnnotation], gap_px: float) -> List[List[WordAnnotation]]:
    """
    Single left-to-right pass over words sorted by horizontal center.
    A word opens a new cluster only when its left edge clears the cluster's
    right edge by more than gap_px AND its center is also past that edge
    (tall or slanted glyphs can otherwise fake a gap).
    """
    ordered = sorted(words, key=lambda w: w.bounding_box.x_center)

    clusters: List[List[WordAnnotation]] = []
    cur: List[WordAnnotation] = []
    cur_max_x: Optional[float] = None

    for w in ordered:
        b = w.bounding_box
        if cur_max_x is None:
            cur = [w]
            cur_max_x = b.x_max
            continue

        gap = b.x_min - cur_max_x
        if gap > gap_px and b.x_center > cur_max_x:
            clusters.append(cur)
            cur = [w]
            cur_max_x = b.x_max
        else:
            cur.append(w)
            cur_max_x = max(cur_max_x, b.x_max)

    if cur:
        clusters.append(cur)
    return clusters


def _reading_order_cmp(a: WordAnnotation, b: WordAnnotation, align_px: float) -> int:
    ay, by = a.bounding_box.y_min, b.bounding_box.y_min
    if abs(ay - by) <= align_px:
        d = a.bounding_box.x_min - b.bounding_box.x_min
    else:
        d = ay - by
    return (d > 0) - (d < 0)


def reading_order_lines(
    words: Sequence[WordAnnotation],
    *,
    align_px: float = ROW_ALIGN_PX,
    break_px: float = ROW_BREAK_PX,
) -> List[str]:
    """
    Rows top→bottom, words left→right within a row.
    Returns one string per row.
    """
    if not words:
        return []

    ordered = sorted(words, key=cmp_to_key(lambda a, b: _reading_order_cmp(a, b, align_px)))

    rows: List[List[WordAnnotation]] = []
    cur: List[WordAnnotation] = []
    last_y: Optional[float] = None

    for w in ordered:
        y = w.bounding_box.y_min
        if last_y is not None and abs(y - last_y) > break_px:
            rows.append(cur)
            cur = []
        cur.append(w)
        last_y = y
    if cur:
        rows.append(cur)

    out: List[str] = []
    for row in rows:
        row_sorted = sorted(row, key=lambda ww: ww.bounding_box.x_min)
        text = " ".join(ww.text.strip() for ww in row_sorted if ww.text.strip())
        if text:
            out.append(text)
    return out


# --- Core ------------------------------------------------------------------

def segment(
    words: Sequence[WordAnnotation],
    full_text: str = "",
    *,
    gap_ratio: float = GAP_RATIO,
    align_px: float = ROW_ALIGN_PX,
    break_px: float = ROW_BREAK_PX,
) -> List[TextCluster]:
    """
    Partition one image's words into address blocks.

    Degenerate input (fewer than 2 words, zero-width geometry, or fewer
    than two multi-word horizontal clusters) returns a single cluster
    carrying the whole-image text, so callers always get at least one block.
    """
    words = tuple(words)
    if len(words) < 2:
        return _whole_image(words, full_text)

    image_width = max(w.bounding_box.x_max for w in words)
    if image_width <= 0:
        return _whole_image(words, full_text)

    gap_px = gap_ratio * image_width
    columns = [c for c in _sweep_columns(words, gap_px) if len(c) >= MIN_CLUSTER_WORDS]

    if len(columns) < 2:
        return _whole_image(words, full_text)

    clusters: List[TextCluster] = []
    for col in columns:
        lines = reading_order_lines(col, align_px=align_px, break_px=break_px)
        clusters.append(TextCluster(words=tuple(col), text="\n".join(lines)))

    if log.isEnabledFor(logging.DEBUG):
        spans: List[Tuple[float, float]] = []
        for c in clusters:
            bb = union_bbox(w.bounding_box for w in c.words)
            if bb is not None:
                spans.append((bb.x_min, bb.x_max))
        log.debug(
            "segmented %d words into %d clusters (gap_px=%.1f, x-spans=%s, boxes=%s)",
            len(words), len(clusters), gap_px, spans, describe_boxes(w.bounding_box for w in words),
        )

    return clusters
