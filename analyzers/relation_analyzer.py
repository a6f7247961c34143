#!/usr/bin/env python3
"""
Model Relation Analyzer
========================
Resolve relation stubs against every model discovered in a build.

Models live in a name-addressed registry (an arena): relations refer to
their target by name, never by object reference, so cyclic relations
(User → Post → User) are plain data and every traversal carries a visited
set.
"""

import logging
from collections import deque
from typing import Dict, Iterator, List, Optional, Set, Tuple

from .diagnostics import DiagnosticCollector, ResolutionFailure, Severity
from .model_analyzer import Model, Relation

logger = logging.getLogger("api_scanner.analyzers.relation_analyzer")


class ModelRegistry:
    """All models of a build, addressed by class name."""

    def __init__(self, diagnostics: Optional[DiagnosticCollector] = None):
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticCollector()
        self._models: Dict[str, Model] = {}

    @staticmethod
    def normalize(name: str) -> str:
        """``"app.models.User"`` / ``'User'`` → ``User``"""
        return name.strip().strip("'\"").rsplit('.', 1)[-1]

    def add(self, model: Model) -> None:
        existing = self._models.get(model.name)
        if existing is not None and existing.qualified_name != model.qualified_name:
            # First one wins; files are added in sorted path order
            self.diagnostics.record(
                ResolutionFailure(
                    f"Duplicate model name '{model.name}' (already defined in {existing.path})",
                    path=model.path,
                    declaration=model.name,
                ),
                Severity.WARNING,
            )
            return
        self._models[model.name] = model

    def get(self, name: str) -> Optional[Model]:
        return self._models.get(self.normalize(name))

    def names(self) -> List[str]:
        return sorted(self._models)

    def __contains__(self, name: str) -> bool:
        return self.normalize(name) in self._models

    def __len__(self) -> int:
        return len(self._models)

    def __iter__(self) -> Iterator[Model]:
        for name in self.names():
            yield self._models[name]


class RelationAnalyzer:
    """
    Second pass over the registry: bind relation targets and walk the graph.

    Unresolvable targets stay dangling (``resolved=False``) and are reported
    as resolution diagnostics; they never abort the build.
    """

    def __init__(self, registry: ModelRegistry, diagnostics: Optional[DiagnosticCollector] = None):
        self.registry = registry
        self.diagnostics = diagnostics if diagnostics is not None else registry.diagnostics

    def resolve(self) -> int:
        """
        Resolve every relation stub.

        Returns:
            Number of dangling relations
        """
        dangling = 0
        for model in self.registry:
            for relation in model.relations:
                target = self.registry.get(relation.target) if relation.target else None
                if target is None:
                    relation.resolved = False
                    dangling += 1
                    self.diagnostics.record(
                        ResolutionFailure(
                            f"Relation '{model.name}.{relation.name}' targets unknown model '{relation.target}'",
                            path=model.path,
                            declaration=f"{model.name}.{relation.name}",
                        ),
                        Severity.WARNING,
                    )
                    continue
                relation.target = target.name
                relation.resolved = True

        if dangling:
            logger.info(f"Relation resolution finished with {dangling} dangling relations")
        return dangling

    def related(self, name: str) -> List[Tuple[Relation, Model]]:
        """Resolved relations of a model with their target models."""
        model = self.registry.get(name)
        if model is None:
            return []
        result = []
        for relation in model.relations:
            if relation.resolved:
                target = self.registry.get(relation.target)
                if target is not None:
                    result.append((relation, target))
        return result

    def graph(self) -> Dict[str, List[str]]:
        """Adjacency list of resolved relations, sorted for stable output."""
        return {
            model.name: sorted({r.target for r in model.relations if r.resolved})
            for model in self.registry
        }

    def traverse(self, root: str, max_depth: Optional[int] = None) -> List[str]:
        """
        Breadth-first walk from ``root``; each model is visited once.

        Example:
            >>> analyzer.traverse("User")   # User → Post → User
            ['User', 'Post']
        """
        start = self.registry.get(root)
        if start is None:
            return []
        visited: Set[str] = {start.name}
        order = [start.name]
        queue = deque([(start.name, 0)])
        while queue:
            name, depth = queue.popleft()
            if max_depth is not None and depth >= max_depth:
                continue
            for relation, target in self.related(name):
                if target.name not in visited:
                    visited.add(target.name)
                    order.append(target.name)
                    queue.append((target.name, depth + 1))
        return order

    def in_cycle(self, name: str) -> bool:
        """True if ``name`` can reach itself through resolved relations."""
        model = self.registry.get(name)
        if model is None:
            return False
        visited: Set[str] = set()
        stack = [t.name for _, t in self.related(model.name)]
        while stack:
            current = stack.pop()
            if current == model.name:
                return True
            if current in visited:
                continue
            visited.add(current)
            stack.extend(t.name for _, t in self.related(current))
        return False
