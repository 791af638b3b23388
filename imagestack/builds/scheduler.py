"""Build scheduler.

Turns a recipe graph into a build order and drives every target through
checkout -> work -> commit. Targets may reference bases declared later in
the recipe; the scheduler sweeps the pending targets repeatedly, building
each one whose base is available, until nothing is left:

- a base of 'empty' is always available
- a base naming a recipe target is available once that target was built in
  this run
- any other base is available if the tag exists in the image store

When a sweep builds nothing, one target whose base is a recipe target with
an existing tag of the same name may be built from that pre-existing image
(closing a cycle over an existing tag). If that is not possible either, the
graph is unsatisfiable.

Targets are built strictly one at a time. A failed target aborts its
working copy and stops the build; targets committed earlier stay tagged, so
a re-run picks up from the existing images.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from imagestack.builds.session import CheckoutSession
from imagestack.errors import ImagestackError, StepExecutionError, UnsatisfiableGraphError
from imagestack.types import EMPTY_BASE, BuildLog, BuildLogEntry, StepKind

if TYPE_CHECKING:
    from imagestack.builds.executor import StepExecutor
    from imagestack.images.layout import TagStore
    from imagestack.recipes.graph import RecipeGraph, Target
    from imagestack.storage.base import StorageBackend

logger = logging.getLogger(__name__)


@dataclass
class BuildState:
    """Progress of one build invocation.

    Attributes:
        built: Target names in the order they were built.
        pending: Targets not built yet, in recipe order.
    """

    built: list[str] = field(default_factory=list)
    pending: list[Target] = field(default_factory=list)

    def is_built(self, name: str) -> bool:
        return name in self.built

    @property
    def remaining(self) -> list[str]:
        return [target.name for target in self.pending]


def is_buildable(
    target: Target,
    graph: RecipeGraph,
    state: BuildState,
    tag_store: TagStore,
    allow_existing_target_tag: bool = False,
) -> bool:
    """Decide whether target's base is available.

    Args:
        target: Candidate target.
        graph: Recipe graph.
        state: Build progress.
        tag_store: Image store.
        allow_existing_target_tag: Accept a pre-existing tag for a base that
            is itself a recipe target not yet built in this run.
    """
    base = target.base
    if base == EMPTY_BASE or state.is_built(base):
        return True
    if base in graph:
        return allow_existing_target_tag and tag_store.tag_exists(base)
    return tag_store.tag_exists(base)


def schedule(
    graph: RecipeGraph,
    tag_store: TagStore,
    build: Callable[[Target], None],
) -> BuildState:
    """Build every target of graph in dependency order.

    Args:
        graph: Recipe graph (already validated).
        tag_store: Image store consulted for base availability.
        build: Called once per target, in build order.

    Returns:
        Final BuildState.

    Raises:
        UnsatisfiableGraphError: If remaining targets can never be built.
    """
    state = BuildState(pending=list(graph))
    sweep = 0
    while state.pending:
        sweep += 1
        logger.debug(
            "Sweep %d: built %s, pending %s", sweep, state.built, state.remaining
        )
        deferred: list[Target] = []
        for target in state.pending:
            if not is_buildable(target, graph, state, tag_store):
                deferred.append(target)
                continue
            build(target)
            state.built.append(target.name)

        if len(deferred) == len(state.pending):
            fallback = next(
                (
                    t
                    for t in deferred
                    if is_buildable(
                        t, graph, state, tag_store, allow_existing_target_tag=True
                    )
                ),
                None,
            )
            if fallback is None:
                logger.error("Unsatisfiable targets: %s", [t.name for t in deferred])
                raise UnsatisfiableGraphError(state.built, [t.name for t in deferred])
            logger.warning(
                "Building %s from the existing %s image", fallback.name, fallback.base
            )
            build(fallback)
            state.built.append(fallback.name)
            deferred.remove(fallback)

        state.pending = deferred
    return state


def plan_build(graph: RecipeGraph, tag_store: TagStore) -> list[str]:
    """Compute the order run() would build graph in, without building.

    Raises:
        RecipeValidationError: If the recipe is invalid.
        UnsatisfiableGraphError: If the graph cannot be ordered.
    """
    graph.validate(tag_store)
    return schedule(graph, tag_store, lambda target: None).built


class BuildScheduler:
    """Builds recipe targets against a storage backend.

    Attributes:
        tag_store: Image store.
        backend: Storage backend owning the working copy.
        executor: Applies work items inside the working copy.
    """

    def __init__(
        self,
        tag_store: TagStore,
        backend: StorageBackend,
        executor: StepExecutor,
    ) -> None:
        self.tag_store = tag_store
        self.backend = backend
        self.executor = executor

    def run(self, graph: RecipeGraph) -> BuildLog:
        """Validate and build every target of graph.

        Args:
            graph: Recipe graph.

        Returns:
            BuildLog listing targets in build order.

        Raises:
            RecipeValidationError: If the recipe is invalid (nothing built).
            InconsistentStateError: If leftover checkout state needs attention.
            UnsatisfiableGraphError: If targets can never be built.
            ImagestackError: The error of the first failing target.
        """
        graph.validate(self.tag_store)
        self.backend.ensure_consistent()

        log = BuildLog()

        def build(target: Target) -> None:
            log.entries.append(self.build_target(target))

        schedule(graph, self.tag_store, build)
        logger.info("Built %d target(s): %s", len(log), ", ".join(log.targets))
        return log

    def build_target(self, target: Target) -> BuildLogEntry:
        """Check out target's base, apply its work and commit it.

        Any failure after checkout aborts the working copy before the error
        propagates.
        """
        logger.info("Building %s from %s", target.name, target.base)
        started_at = datetime.now(timezone.utc)
        session = CheckoutSession(self.backend)
        session.checkout(target.base)
        try:
            rootfs = session.rootfs
            for archive in target.expand:
                self._apply(target, StepKind.EXPAND, self.executor.expand, rootfs, archive)
            for command in target.run:
                self._apply(target, StepKind.RUN, self.executor.run, rootfs, command)
            for spec in target.install:
                self._apply(target, StepKind.INSTALL, self.executor.install, rootfs, spec)
            if target.entrypoint:
                session.set_entrypoint(target.entrypoint)
            digest = session.commit(target.name)
        except Exception as e:
            logger.error("Building %s failed: %s", target.name, e)
            if session.is_checked_out:
                session.abort(force=True)
            raise

        return BuildLogEntry(
            target=target.name,
            base=target.base,
            digest=digest,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )

    @staticmethod
    def _apply(
        target: Target,
        kind: StepKind,
        step: Callable[[Path, str], None],
        rootfs: Path,
        item: str,
    ) -> None:
        try:
            step(rootfs, item)
        except ImagestackError:
            raise
        except (OSError, ValueError) as e:
            raise StepExecutionError(target.name, kind.value, str(e)) from e


def run_build(
    graph: RecipeGraph,
    tag_store: TagStore,
    backend: StorageBackend,
    executor: StepExecutor,
) -> BuildLog:
    """Build graph with a one-off BuildScheduler."""
    return BuildScheduler(tag_store, backend, executor).run(graph)


__all__ = [
    "BuildScheduler",
    "BuildState",
    "is_buildable",
    "plan_build",
    "run_build",
    "schedule",
]
