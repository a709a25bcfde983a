"""Link commenters that reuse the same payment handles or contacts.

Commenters are nodes. Two commenters are adjacent when they share at least
``min_shared`` identifiers of the same type with the same normalized value,
keyed as ``"TYPE:normalized"``. Connected components with two or more
members are reported as clusters, largest first.
"""

from __future__ import annotations

from collections import defaultdict, deque
from collections.abc import Hashable, Iterable
from dataclasses import dataclass
from itertools import combinations

from sqlalchemy import select
from sqlalchemy.orm import Session

from comment_sentry.models import ExtractedIdentifier, SuspiciousAccount

DEFAULT_MIN_SHARED = 2


@dataclass(frozen=True)
class Cluster:
    """A connected group of commenters and the identifiers tying them together."""

    members: tuple[Hashable, ...]
    shared_identifiers: tuple[str, ...]

    @property
    def size(self) -> int:
        return len(self.members)


class IdentifierGraph:
    """Undirected graph of commenters keyed by shared normalized identifiers."""

    def __init__(self, min_shared: int = DEFAULT_MIN_SHARED) -> None:
        if min_shared < 1:
            raise ValueError("min_shared must be at least 1")
        self.min_shared = min_shared
        self._identifiers: dict[Hashable, set[str]] = defaultdict(set)

    def add(self, node: Hashable, identifier: str) -> None:
        if identifier:
            self._identifiers[node].add(identifier)

    def add_many(self, pairs: Iterable[tuple[Hashable, str]]) -> None:
        for node, identifier in pairs:
            self.add(node, identifier)

    @property
    def nodes(self) -> list[Hashable]:
        return list(self._identifiers)

    def adjacency(self) -> dict[Hashable, set[Hashable]]:
        """Edges between nodes sharing at least ``min_shared`` identifiers."""
        holders: dict[str, set[Hashable]] = defaultdict(set)
        for node, identifiers in self._identifiers.items():
            for identifier in identifiers:
                holders[identifier].add(node)

        # Only pairs that share one identifier can share more.
        candidates: set[tuple[Hashable, Hashable]] = set()
        for nodes in holders.values():
            for a, b in combinations(sorted(nodes, key=repr), 2):
                candidates.add((a, b))

        graph: dict[Hashable, set[Hashable]] = {node: set() for node in self._identifiers}
        for a, b in candidates:
            if len(self._identifiers[a] & self._identifiers[b]) >= self.min_shared:
                graph[a].add(b)
                graph[b].add(a)
        return graph

    def clusters(self) -> list[Cluster]:
        """Connected components of two or more nodes, largest first."""
        graph = self.adjacency()
        visited: set[Hashable] = set()
        found: list[Cluster] = []

        for start in graph:
            if start in visited or not graph[start]:
                continue
            component: list[Hashable] = []
            queue: deque[Hashable] = deque([start])
            visited.add(start)
            while queue:
                node = queue.popleft()
                component.append(node)
                for neighbour in graph[node]:
                    if neighbour not in visited:
                        visited.add(neighbour)
                        queue.append(neighbour)

            shared: set[str] = set()
            for a, b in combinations(component, 2):
                if b in graph[a]:
                    shared |= self._identifiers[a] & self._identifiers[b]
            found.append(Cluster(members=tuple(component), shared_identifiers=tuple(sorted(shared))))

        found.sort(key=lambda cluster: cluster.size, reverse=True)
        return found


def build_identifier_clusters(
    db: Session,
    *,
    account_id: int | None = None,
    min_shared: int = DEFAULT_MIN_SHARED,
) -> list[Cluster]:
    """Cluster suspicious-account ids by shared active identifiers."""
    stmt = (
        select(
            ExtractedIdentifier.suspicious_account_id,
            ExtractedIdentifier.identifier_type,
            ExtractedIdentifier.normalized_identifier,
        )
        .join(SuspiciousAccount, ExtractedIdentifier.suspicious_account_id == SuspiciousAccount.id)
        .where(ExtractedIdentifier.is_active.is_(True))
    )
    if account_id is not None:
        stmt = stmt.where(SuspiciousAccount.account_id == account_id)

    graph = IdentifierGraph(min_shared=min_shared)
    graph.add_many(
        (account, f"{identifier_type}:{normalized}")
        for account, identifier_type, normalized in db.execute(stmt)
    )
    return graph.clusters()
