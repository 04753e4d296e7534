"""
Arena-indexed ordered forest.

Nodes live in a dict keyed by an integer index; callers only ever hold
`NodeId` handles. Handles are never reused and stay valid for the whole life
of the forest, whatever is appended elsewhere.
"""
from __future__ import annotations
import itertools
from dataclasses import dataclass
from typing import Dict, Generic, Iterator, List, Optional, TypeVar

from .errors import InvalidHandle

T = TypeVar("T")

_forest_ids = itertools.count(1)


@dataclass(frozen=True)
class NodeId:
    forest: int
    idx: int


@dataclass
class _Node(Generic[T]):
    value: T
    parent: Optional[NodeId] = None
    prev_sibling: Optional[NodeId] = None
    next_sibling: Optional[NodeId] = None
    first_child: Optional[NodeId] = None
    last_child: Optional[NodeId] = None


class Forest(Generic[T]):
    def __init__(self):
        self._id = next(_forest_ids)
        self._next_idx = 0
        self._nodes: Dict[int, _Node[T]] = {}
        self._roots: List[NodeId] = []

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node: object) -> bool:
        return isinstance(node, NodeId) and node.forest == self._id and node.idx in self._nodes

    def _alloc(self, value: T) -> NodeId:
        node_id = NodeId(self._id, self._next_idx)
        self._next_idx += 1
        self._nodes[node_id.idx] = _Node(value)
        return node_id

    def _node(self, node: NodeId) -> _Node[T]:
        if node not in self:
            raise InvalidHandle(f"Node {node!r} does not belong to this forest.")
        return self._nodes[node.idx]

    def create_root(self, value: T) -> NodeId:
        node_id = self._alloc(value)
        self._roots.append(node_id)
        return node_id

    def append_child(self, parent: NodeId, value: T) -> NodeId:
        # validate before allocating so a bad handle leaves no stray node
        parent_node = self._node(parent)
        node_id = self._alloc(value)
        node = self._nodes[node_id.idx]
        node.parent = parent

        last = parent_node.last_child
        if last is None:
            parent_node.first_child = node_id
        else:
            self._nodes[last.idx].next_sibling = node_id
            node.prev_sibling = last
        parent_node.last_child = node_id
        return node_id

    def value(self, node: NodeId) -> T:
        return self._node(node).value

    def parent(self, node: NodeId) -> Optional[NodeId]:
        return self._node(node).parent

    def roots(self) -> List[NodeId]:
        return list(self._roots)

    def children(self, node: NodeId) -> Iterator[NodeId]:
        child = self._node(node).first_child
        while child is not None:
            yield child
            child = self._nodes[child.idx].next_sibling

    def depth(self, node: NodeId) -> int:
        d = 0
        parent = self._node(node).parent
        while parent is not None:
            d += 1
            parent = self._nodes[parent.idx].parent
        return d

    def is_leaf(self, node: NodeId) -> bool:
        return self._node(node).first_child is None

    def walk(self, node: Optional[NodeId] = None) -> Iterator[NodeId]:
        """Pre-order traversal of one subtree, or of every tree when `node` is None."""
        starts = self.roots() if node is None else [node]
        for start in starts:
            self._node(start)
            stack = [start]
            while stack:
                cur = stack.pop()
                yield cur
                stack.extend(reversed(list(self.children(cur))))
