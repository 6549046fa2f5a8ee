from typing import Any, Generic, Protocol, TypeVar

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen in production mode"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def find(self, name: str) -> T | None:
        """Get an implementation by name, or None when nothing is registered."""
        return self._implementations.get(name)

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def clear(self) -> None:
        """Remove every registered implementation."""
        if self._frozen:
            raise RuntimeError(f"Cannot clear frozen {self.name.lower()} registry")
        self._implementations.clear()

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Job Registry - workflow handlers keyed by job name
class JobHandler(Protocol):
    """Protocol for workflow handlers that process queued jobs."""

    async def handle(
        self,
        context: Any,  # JobContext
        payload: dict[str, Any],
    ) -> dict[str, Any] | None:
        """
        Handle a queued job.

        Args:
            context: Job identity and correlation id for this delivery
            payload: Job-specific parameters

        Returns:
            Optional result dictionary reported with the completed job

        Raises:
            Any exception marks the delivery as failed; the broker decides
            whether the job is redelivered.
        """
        ...


class JobRegistry(Registry[JobHandler]):
    """Registry for workflow handlers."""

    def __init__(self):
        super().__init__("Job")


# Global registry instance (singleton)
job_registry = JobRegistry()
