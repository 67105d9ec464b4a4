"""
Column Clustering
=================
Groups OCR word boxes into table columns.

Each word box is turned into a run of auxiliary points spaced along its
horizontal extent, so a wide word pulls on its neighbours across its full
width instead of only at its centre. Single-linkage agglomerative
clustering then chains overlapping words of different rows into the same
column, while the whitespace gutter between columns (wider than the
distance threshold) keeps columns apart.

Clusters are numbered left to right by their leftmost edge.
"""

from __future__ import annotations

import logging
from collections import defaultdict

import numpy as np
from sklearn.cluster import AgglomerativeClustering

from .models import BoundingBox, ColumnCluster, OcrWord, TableRow

logger = logging.getLogger(__name__)


def synthesize_points(
    words: list[OcrWord],
    spacing: float = 5.0,
    vertical_weight: float = 0.0,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Sample points along every word box's horizontal midline.

    Returns:
        (points of shape (n, 2), owner word index of each point)
    """
    if spacing <= 0:
        raise ValueError(f"spacing must be positive, got {spacing}")

    points: list[tuple[float, float]] = []
    owners: list[int] = []

    for idx, word in enumerate(words):
        left, right = float(word.box.x), float(word.box.right)
        mid_y = (word.box.y + word.box.height / 2.0) * vertical_weight

        xs = np.arange(left, right, spacing)
        if xs.size == 0 or xs[-1] < right:
            xs = np.append(xs, right)

        points.extend((x, mid_y) for x in xs)
        owners.extend([idx] * len(xs))

    return (
        np.asarray(points, dtype=float).reshape(-1, 2),
        np.asarray(owners, dtype=int),
    )


def cluster_columns(
    words: list[OcrWord],
    distance_threshold: float = 20.0,
    spacing: float = 5.0,
    vertical_weight: float = 0.0,
) -> tuple[list[int], list[ColumnCluster]]:
    """
    Assign every word to a column.

    Returns:
        (column index per word, columns ordered left to right)
    """
    if spacing >= distance_threshold:
        raise ValueError(
            f"spacing ({spacing}) must be smaller than distance_threshold "
            f"({distance_threshold}) or a word's own points will not link"
        )

    if not words:
        return [], []

    points, owners = synthesize_points(
        words, spacing=spacing, vertical_weight=vertical_weight
    )

    if len(points) < 2:
        raw_word_labels = np.zeros(len(words), dtype=int)
    else:
        model = AgglomerativeClustering(
            n_clusters=None,
            distance_threshold=distance_threshold,
            linkage="single",
        )
        point_labels = model.fit_predict(points)

        raw_word_labels = np.empty(len(words), dtype=int)
        for idx in range(len(words)):
            raw_word_labels[idx] = np.bincount(point_labels[owners == idx]).argmax()

    # Renumber clusters left to right
    extents: dict[int, list[int]] = {}
    counts: dict[int, int] = defaultdict(int)
    for word, raw in zip(words, raw_word_labels):
        raw = int(raw)
        counts[raw] += 1
        if raw not in extents:
            extents[raw] = [word.box.x, word.box.right]
        else:
            extents[raw][0] = min(extents[raw][0], word.box.x)
            extents[raw][1] = max(extents[raw][1], word.box.right)

    ordered = sorted(extents, key=lambda raw: (extents[raw][0], extents[raw][1]))
    remap = {raw: new for new, raw in enumerate(ordered)}

    clusters = [
        ColumnCluster(
            index=remap[raw],
            left=extents[raw][0],
            right=extents[raw][1],
            word_count=counts[raw],
        )
        for raw in ordered
    ]
    labels = [remap[int(raw)] for raw in raw_word_labels]

    logger.debug(f"Clustered {len(words)} words into {len(clusters)} columns")
    return labels, clusters


def assemble_rows(
    words: list[OcrWord],
    labels: list[int],
    clusters: list[ColumnCluster],
    row_boxes: list[BoundingBox],
) -> list[TableRow]:
    """
    Rebuild table rows from clustered words.

    Each cell holds the row's words of that column, joined by a space in
    the order the OCR engine read them.
    """
    if len(words) != len(labels):
        raise ValueError(
            f"Got {len(labels)} labels for {len(words)} words"
        )

    grouped: dict[tuple[int, int], list[OcrWord]] = defaultdict(list)
    for word, label in zip(words, labels):
        grouped[(word.row_index, label)].append(word)

    rows: list[TableRow] = []
    for row_index, box in enumerate(row_boxes):
        cells = []
        for column in clusters:
            cell_words = sorted(
                grouped.get((row_index, column.index), []),
                key=lambda w: w.order_index,
            )
            cells.append(" ".join(w.text for w in cell_words))
        rows.append(TableRow(index=row_index, box=box, cells=cells))

    return rows
