"""Recipe target graph and structural validation.

Targets form a forest rooted at tags already present in the image store or
at the 'empty' sentinel. validate() checks every target's base and work
without touching storage; cycles among targets are left to the scheduler,
which detects them as a sweep that makes no progress.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from imagestack.errors import (
    DuplicateTargetError,
    EmptyTargetError,
    MissingBaseError,
    RecipeValidationError,
    UnknownBaseError,
)
from imagestack.types import EMPTY_BASE

if TYPE_CHECKING:
    from imagestack.images.layout import TagStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Target:
    """A named image derived from a base by a fixed sequence of work.

    Attributes:
        name: Unique target name; also the tag it is committed under.
        base: Another target name, an existing tag, or 'empty'.
        expand: Archives to extract, in order.
        run: Shell commands to run, in order.
        install: Install steps, in order.
        entrypoint: Optional image entrypoint.
    """

    name: str
    base: str
    expand: tuple[str, ...] = ()
    run: tuple[str, ...] = ()
    install: tuple[str, ...] = ()
    entrypoint: str | None = None

    @property
    def has_work(self) -> bool:
        """Whether the target performs at least one unit of work."""
        return bool(self.expand or self.run or self.install or self.entrypoint)


@dataclass
class RecipeGraph:
    """The full set of targets parsed from one recipe."""

    targets: dict[str, Target] = field(default_factory=dict)

    @classmethod
    def from_targets(cls, targets: Iterable[Target]) -> RecipeGraph:
        """Build a graph, rejecting duplicate names."""
        graph = cls()
        for target in targets:
            graph.add(target)
        return graph

    def add(self, target: Target) -> None:
        """Add a target.

        Raises:
            DuplicateTargetError: If a target with the same name exists.
        """
        if target.name in self.targets:
            raise DuplicateTargetError(target.name)
        self.targets[target.name] = target

    def has_target(self, name: str) -> bool:
        return name in self.targets

    def get(self, name: str) -> Target:
        return self.targets[name]

    def __contains__(self, name: object) -> bool:
        return name in self.targets

    def __iter__(self) -> Iterator[Target]:
        return iter(self.targets.values())

    def __len__(self) -> int:
        return len(self.targets)

    def check_target(self, target: Target, tag_store: TagStore) -> None:
        """Validate a single target against this graph.

        Raises:
            MissingBaseError: If the base is empty.
            UnknownBaseError: If the base cannot be resolved.
            EmptyTargetError: If the target has no work.
        """
        if not target.base:
            raise MissingBaseError(target.name)
        if (
            target.base != EMPTY_BASE
            and target.base not in self.targets
            and not tag_store.tag_exists(target.base)
        ):
            raise UnknownBaseError(target.name, target.base)
        if not target.has_work:
            raise EmptyTargetError(target.name)

    def iter_errors(self, tag_store: TagStore) -> Iterator[RecipeValidationError]:
        """Yield the validation error of every failing target."""
        for target in self:
            try:
                self.check_target(target, tag_store)
            except RecipeValidationError as e:
                yield e

    def validate(self, tag_store: TagStore) -> None:
        """Validate every target.

        Pure apart from tag existence queries. Reports the first failing
        target in iteration order; iter_errors() lists all of them.

        Args:
            tag_store: Image store consulted for pre-existing bases.

        Raises:
            RecipeValidationError: On the first failing target.
        """
        for error in self.iter_errors(tag_store):
            logger.error("Recipe error: %s", error)
            raise error
        logger.debug("Recipe with %d target(s) is valid", len(self))


__all__ = ["RecipeGraph", "Target"]
