"""Error taxonomy for imagestack.

Every exception carries a stable ``code`` string for programmatic handling.
Recipe problems are reported before any mutation; storage and tool failures
stop the current build step without rolling back earlier commits.
"""

from collections.abc import Sequence

# Error code constants
VALIDATION_ERROR = "validation"
SCHEDULING_ERROR = "scheduling"
STORAGE_ERROR = "storage"
TAG_STORE_ERROR = "tag_store"
EXTERNAL_TOOL_ERROR = "external_tool"
STEP_ERROR = "step_failed"


class ImagestackError(Exception):
    """Base error for all imagestack failures."""

    def __init__(self, message: str, code: str = "imagestack_error") -> None:
        super().__init__(message)
        self.message = message
        self.code = code


# Recipe validation


class RecipeValidationError(ImagestackError):
    """Malformed recipe; always fatal before any mutation."""

    def __init__(
        self,
        message: str,
        target: str | None = None,
        code: str = VALIDATION_ERROR,
    ) -> None:
        super().__init__(message, code=code)
        self.target = target


class RecipeParseError(RecipeValidationError):
    """Recipe input does not match the recipe schema."""

    def __init__(self, message: str, target: str | None = None) -> None:
        super().__init__(message, target=target, code="recipe_parse_error")


class DuplicateTargetError(RecipeValidationError):
    """Two targets share a name."""

    def __init__(self, target: str) -> None:
        super().__init__(
            f"Duplicate target: {target}", target=target, code="duplicate_target"
        )


class MissingBaseError(RecipeValidationError):
    """Target has no base."""

    def __init__(self, target: str) -> None:
        super().__init__(
            f"No base defined for target {target}", target=target, code="missing_base"
        )


class UnknownBaseError(RecipeValidationError):
    """Target base is neither empty, a recipe target nor an existing tag."""

    def __init__(self, target: str, base: str) -> None:
        super().__init__(
            f"Nonexistent base for target {target}: {base}",
            target=target,
            code="unknown_base",
        )
        self.base = base


class EmptyTargetError(RecipeValidationError):
    """Target performs no work."""

    def __init__(self, target: str) -> None:
        super().__init__(
            f"No work for target: {target}", target=target, code="empty_target"
        )


# Scheduling


class SchedulingError(ImagestackError):
    """Build order cannot be established.

    Attributes:
        built: Targets committed before scheduling stopped.
        remaining: Targets left unbuilt.
    """

    def __init__(
        self,
        message: str,
        built: Sequence[str] = (),
        remaining: Sequence[str] = (),
        code: str = SCHEDULING_ERROR,
    ) -> None:
        super().__init__(message, code=code)
        self.built = list(built)
        self.remaining = list(remaining)


class UnsatisfiableGraphError(SchedulingError):
    """A sweep built nothing while targets remain."""

    def __init__(self, built: Sequence[str], remaining: Sequence[str]) -> None:
        super().__init__(
            "Cannot satisfy bases for targets: " + ", ".join(remaining),
            built=built,
            remaining=remaining,
            code="unsatisfiable_graph",
        )


# Storage


class StorageError(ImagestackError):
    """Checkout, commit or abort failed."""

    def __init__(self, message: str, code: str = STORAGE_ERROR) -> None:
        super().__init__(message, code=code)


class AlreadyCheckedOutError(StorageError):
    """A working copy already exists."""

    def __init__(self, tag: str | None) -> None:
        detail = f" (tag {tag})" if tag else ""
        super().__init__(
            f"A working copy is already checked out{detail}",
            code="already_checked_out",
        )
        self.tag = tag


class NotCheckedOutError(StorageError):
    """Operation requires a checked-out working copy."""

    def __init__(self) -> None:
        super().__init__("Nothing is checked out", code="not_checked_out")


class NothingToAbortError(StorageError):
    """Abort requested with no checkout in place."""

    def __init__(self) -> None:
        super().__init__("Nothing to abort", code="nothing_to_abort")


class SourceNotFoundError(StorageError):
    """Checkout source does not resolve."""

    def __init__(self, source: str) -> None:
        super().__init__(f"Source not found: {source}", code="source_not_found")
        self.source = source


class VolumeError(StorageError):
    """Backing volume could not be provisioned or removed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="volume_error")


class UnsupportedBackendError(StorageError):
    """Configured storage driver has no implementation."""

    def __init__(self, driver: str) -> None:
        super().__init__(
            f"Unsupported storage driver: {driver}", code="unsupported_backend"
        )
        self.driver = driver


class InconsistentStateError(StorageError):
    """On-disk checkout state disagrees with itself or the image store."""

    def __init__(self, issues: Sequence[str]) -> None:
        super().__init__(
            "Inconsistent checkout state: " + "; ".join(issues),
            code="inconsistent_state",
        )
        self.issues = list(issues)


# Tag store


class TagStoreError(ImagestackError):
    """Image layout could not be read."""

    def __init__(self, message: str, code: str = TAG_STORE_ERROR) -> None:
        super().__init__(message, code=code)


class TagNotFoundError(TagStoreError):
    """Tag is not present in the layout."""

    def __init__(self, tag: str) -> None:
        super().__init__(f"Tag not found: {tag}", code="tag_not_found")
        self.tag = tag


class AmbiguousTagError(TagStoreError):
    """Tag resolves to more than one manifest."""

    def __init__(self, tag: str, count: int) -> None:
        super().__init__(
            f"Tag is ambiguous: {tag} ({count} manifests)", code="ambiguous_tag"
        )
        self.tag = tag
        self.count = count


class InvalidLayoutError(TagStoreError):
    """Layout metadata is malformed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="invalid_layout")


# External commands and build steps


class ExternalToolError(ImagestackError):
    """A delegated external command failed."""

    def __init__(
        self,
        step: str,
        message: str,
        argv: Sequence[str] = (),
        exit_code: int | None = None,
        output: str | None = None,
    ) -> None:
        super().__init__(f"{step}: {message}", code=EXTERNAL_TOOL_ERROR)
        self.step = step
        self.argv = list(argv)
        self.exit_code = exit_code
        self.output = output


class StepExecutionError(ImagestackError):
    """A target's work step failed."""

    def __init__(self, target: str, step: str, message: str) -> None:
        super().__init__(
            f"Target {target} failed at {step} step: {message}", code=STEP_ERROR
        )
        self.target = target
        self.step = step


__all__ = [
    "AlreadyCheckedOutError",
    "AmbiguousTagError",
    "DuplicateTargetError",
    "EmptyTargetError",
    "ExternalToolError",
    "ImagestackError",
    "InconsistentStateError",
    "InvalidLayoutError",
    "MissingBaseError",
    "NotCheckedOutError",
    "NothingToAbortError",
    "RecipeParseError",
    "RecipeValidationError",
    "SchedulingError",
    "SourceNotFoundError",
    "StepExecutionError",
    "StorageError",
    "TagNotFoundError",
    "TagStoreError",
    "UnknownBaseError",
    "UnsatisfiableGraphError",
    "UnsupportedBackendError",
    "VolumeError",
]
