"""Relation Inferencer.

Derives relation edges between persisted birth events that share an attribute:

    - misma_madre:        same normalized RUT (same mother)
    - mismo_consultorio:  same clinic
    - mismo_mes:          same birth month of the same year

Edges are directed and exhaustive: a group of n records sharing a value yields
n * (n - 1) edges. Inference reads from storage only and relies on the storage
port's idempotent upsert, so running it again never adds duplicates.
"""

import logging
from typing import Dict, List, Optional

import pandas as pd
from pandas.api.types import is_object_dtype, is_string_dtype

from birthbook.domain.canonical_schema import RelationEdge, RelationKind
from birthbook.domain.ports import StoragePort

logger = logging.getLogger(__name__)

GROUPING_ATTRIBUTES: Dict[RelationKind, tuple] = {
    RelationKind.SAME_MOTHER: ("rut_normalized",),
    RelationKind.SAME_CLINIC: ("consultorio",),
    RelationKind.SAME_PERIOD: ("mes_parto", "ano_parto"),
}

_FRAME_COLUMNS = ["id", "rut_normalized", "consultorio", "mes_parto", "ano_parto"]


class RelationInferencer:
    """Computes relation edges from stored records using pandas self-joins.

    Parameters:
        max_group_size: Optional cap on the number of records sharing one
                        grouping value. Larger groups are skipped (and logged)
                        instead of producing n * (n - 1) edges.

    Example Usage:
        ```python
        inferencer = RelationInferencer()
        counts = inferencer.infer(storage)
        counts[RelationKind.SAME_CLINIC]  # edges inserted by this run
        ```
    """

    def __init__(self, max_group_size: Optional[int] = None):
        self.max_group_size = max_group_size

    def infer(self, storage: StoragePort) -> Dict[RelationKind, int]:
        """Derive every relation kind over all stored records.

        Returns:
            dict: RelationKind -> number of edges newly inserted
        """
        frame = self.load_frame(storage)
        counts: Dict[RelationKind, int] = {}
        for kind in GROUPING_ATTRIBUTES:
            edges = self.edges_for(frame, kind)
            counts[kind] = storage.upsert_edges(edges) if edges else 0
            logger.info(f"Relation pass {kind.value}: {len(edges)} candidate edges, {counts[kind]} inserted")
        return counts

    def recompute(self, storage: StoragePort) -> Dict[RelationKind, int]:
        """Drop every edge, then derive all relations from scratch."""
        removed = storage.clear_edges()
        logger.info(f"Cleared {removed} relation edges before recompute")
        return self.infer(storage)

    @staticmethod
    def load_frame(storage: StoragePort) -> pd.DataFrame:
        """Load the grouping attributes of every stored record into a DataFrame."""
        rows = [
            {
                "id": record.id,
                "rut_normalized": record.rut_normalized,
                "consultorio": record.consultorio,
                "mes_parto": record.mes_parto,
                "ano_parto": record.fecha_parto.year if record.fecha_parto else None,
            }
            for record in storage.all_records()
        ]
        return pd.DataFrame(rows, columns=_FRAME_COLUMNS)

    def edges_for(self, frame: pd.DataFrame, kind: RelationKind) -> List[RelationEdge]:
        """Compute the directed edges of one relation kind.

        Records with a missing (or blank) grouping value never relate to anything.
        """
        if frame.empty:
            return []

        columns = list(GROUPING_ATTRIBUTES[kind])
        keyed = frame[["id"] + columns].dropna(subset=columns)
        for column in columns:
            if is_string_dtype(keyed[column]) or is_object_dtype(keyed[column]):
                keyed = keyed[keyed[column].astype(str).str.strip() != ""]
        if keyed.empty:
            return []

        if self.max_group_size is not None:
            sizes = keyed.groupby(columns)["id"].transform("size")
            oversized = keyed[sizes > self.max_group_size]
            if not oversized.empty:
                skipped_groups = len(oversized.drop_duplicates(subset=columns))
                logger.warning(
                    f"Relation pass {kind.value}: skipping {skipped_groups} group(s) "
                    f"larger than {self.max_group_size} records"
                )
            keyed = keyed[sizes <= self.max_group_size]

        pairs = keyed.merge(keyed, on=columns, suffixes=("_source", "_target"))
        pairs = pairs[pairs["id_source"] != pairs["id_target"]]
        pairs = pairs.drop_duplicates(subset=["id_source", "id_target"])

        return [
            RelationEdge(source_id=source_id, target_id=target_id, kind=kind)
            for source_id, target_id in zip(pairs["id_source"], pairs["id_target"])
        ]
