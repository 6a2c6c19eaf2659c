from collections import defaultdict
from typing import Dict, List, Sequence, Tuple

from core.entities import DuplicateCluster
from ingestion.base import ContentItem


class UnionFind:
    def __init__(self, size: int):
        self.parent = list(range(size))
        self.rank = [0] * size

    def find(self, x: int) -> int:
        root = x
        while self.parent[root] != root:
            root = self.parent[root]
        # Path compression
        while self.parent[x] != root:
            self.parent[x], x = root, self.parent[x]
        return root

    def union(self, a: int, b: int) -> bool:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return False
        if self.rank[root_a] < self.rank[root_b]:
            root_a, root_b = root_b, root_a
        self.parent[root_b] = root_a
        if self.rank[root_a] == self.rank[root_b]:
            self.rank[root_a] += 1
        return True

    def groups(self) -> Dict[int, List[int]]:
        grouped: Dict[int, List[int]] = defaultdict(list)
        for index in range(len(self.parent)):
            grouped[self.find(index)].append(index)
        return grouped


def build_clusters(
    items: Sequence[ContentItem],
    edges: List[Tuple[int, int, float]],
) -> Tuple[List[ContentItem], List[DuplicateCluster]]:
    """
    edges: (index_a, index_b, score) pairs already judged duplicates.

    Returns (unique_items, clusters). unique_items holds one item per group,
    in the fetch order of the group's first member.
    """
    uf = UnionFind(len(items))
    for a, b, _ in edges:
        uf.union(a, b)

    min_score: Dict[int, float] = {}
    for a, b, score in edges:
        root = uf.find(a)
        min_score[root] = min(score, min_score.get(root, 1.0))

    primaries: Dict[int, int] = {}
    clusters_by_first: Dict[int, DuplicateCluster] = {}
    for root, members in uf.groups().items():
        # Highest engagement wins; earliest fetched breaks ties
        primary = min(members, key=lambda i: (-items[i].engagement_potential, i))
        primaries[min(members)] = primary
        if len(members) > 1:
            clusters_by_first[min(members)] = DuplicateCluster(
                primary=items[primary],
                duplicates=[items[i] for i in members if i != primary],
                similarity_score=min_score.get(root, 1.0),
            )

    order = sorted(primaries)
    unique_items = [items[primaries[first]] for first in order]
    clusters = [clusters_by_first[first] for first in order if first in clusters_by_first]
    return unique_items, clusters
