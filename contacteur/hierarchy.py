from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional

import pandas as pd

from .forest import Forest, NodeId
from .utils import cell_text, load_json, rules_path

logger = logging.getLogger(__name__)

RULES = load_json(rules_path(), {})

EVALUATION_ROW = 0
SECTION_ROW = 1
COMPONENT_ROW = 2
HEADER_ROWS = 3
# columns 0..4 hold student metadata, grades start after them
GRADE_OFFSET = int(RULES.get("grade_offset", 5))


@dataclass(frozen=True)
class EvaluationItem:
    """
    One node of the evaluation hierarchy.
    Depth gives the role: 0 evaluation, 1 section, 2 component (leaf).
    `local_index` is the position among siblings.
    """
    local_index: int
    name: str
    scale_id: Optional[int] = None
    formula: Optional[str] = None
    leaf_index: Optional[int] = None
    column: Optional[int] = None

    def __post_init__(self):
        if self.formula is not None and self.scale_id is None:
            raise ValueError(f"Item '{self.name}' has a formula but no scale.")
        if self.scale_id is not None and self.leaf_index is None:
            raise ValueError(f"Item '{self.name}' is not a component and cannot carry a scale.")

    @property
    def is_component(self) -> bool:
        return self.leaf_index is not None


@dataclass
class EvaluationHierarchy:
    forest: Forest[EvaluationItem] = field(default_factory=Forest)
    evaluations: List[NodeId] = field(default_factory=list)
    components: List[NodeId] = field(default_factory=list)

    @property
    def leaf_count(self) -> int:
        return len(self.components)

    @property
    def leaf_columns(self) -> List[int]:
        return [self.forest.value(c).column for c in self.components]

    def item(self, node: NodeId) -> EvaluationItem:
        return self.forest.value(node)

    def children(self, node: NodeId) -> List[NodeId]:
        return list(self.forest.children(node))

    def paths(self) -> Iterator[tuple[str, str, str]]:
        # (evaluation, section, component) names in leaf order
        for comp in self.components:
            section = self.forest.parent(comp)
            evaluation = self.forest.parent(section)
            yield (
                self.item(evaluation).name,
                self.item(section).name,
                self.item(comp).name,
            )

    def as_nested(self) -> List[dict]:
        out = []
        for ev in self.evaluations:
            sections = []
            for sec in self.forest.children(ev):
                sections.append({
                    "name": self.item(sec).name,
                    "components": [self.item(c).name for c in self.forest.children(sec)],
                })
            out.append({"name": self.item(ev).name, "sections": sections})
        return out


def _header(df: pd.DataFrame, row: int, col: int) -> str:
    if row >= df.shape[0] or col >= df.shape[1]:
        return ""
    return cell_text(df.iat[row, col])


def decode_evaluations(df_raw: pd.DataFrame, first_col: int = GRADE_OFFSET) -> EvaluationHierarchy:
    """
    Rebuilds the evaluation -> section -> component tree from the three header rows.

    Scan left to right; a non-blank cell opens a new node at its level, a blank
    cell continues whatever node is open. Sections without an open evaluation
    and components without an open section are dropped.
    """
    h = EvaluationHierarchy()
    forest = h.forest

    cur_eval: Optional[NodeId] = None
    cur_section: Optional[NodeId] = None
    n_sections = 0
    n_components = 0

    for col in range(first_col, df_raw.shape[1]):
        ev_name = _header(df_raw, EVALUATION_ROW, col)
        sec_name = _header(df_raw, SECTION_ROW, col)
        comp_name = _header(df_raw, COMPONENT_ROW, col)

        if ev_name:
            cur_eval = forest.create_root(EvaluationItem(len(h.evaluations), ev_name))
            h.evaluations.append(cur_eval)
            cur_section = None
            n_sections = 0

        if sec_name:
            if cur_eval is None:
                logger.debug("column %s: section '%s' without evaluation ignored", col, sec_name)
            else:
                cur_section = forest.append_child(cur_eval, EvaluationItem(n_sections, sec_name))
                n_sections += 1
                n_components = 0

        if comp_name:
            if cur_section is None:
                logger.debug("column %s: component '%s' without section ignored", col, comp_name)
            else:
                item = EvaluationItem(
                    n_components,
                    comp_name,
                    leaf_index=len(h.components),
                    column=col,
                )
                h.components.append(forest.append_child(cur_section, item))
                n_components += 1

    return h


def tree_from_rows(rows: List[Any]) -> Forest[dict]:
    """
    Rebuilds a forest from stored evaluation rows (id, name, parent_id, sibling_index).
    Siblings are attached in sibling_index order, whatever the row order.
    """
    forest: Forest[dict] = Forest()
    handles = {}
    pending = sorted(rows, key=lambda r: r["sibling_index"])
    while pending:
        # one level at a time: only parents attached in an earlier round count
        ready = [r for r in pending if r["parent_id"] is None or r["parent_id"] in handles]
        if not ready:
            raise ValueError("Evaluation rows reference missing parents.")
        for r in ready:
            payload = {"id": r["id"], "name": r["name"], "sibling_index": r["sibling_index"]}
            if r["parent_id"] is None:
                handles[r["id"]] = forest.create_root(payload)
            else:
                handles[r["id"]] = forest.append_child(handles[r["parent_id"]], payload)
        done = {r["id"] for r in ready}
        pending = [r for r in pending if r["id"] not in done]
    return forest
