from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .client import EngineClient


class EngineResource:
    """Base class for objects living inside the engine."""

    def __init__(
        self, client: "EngineClient", attrs: dict[str, Any] | None = None
    ) -> None:
        self.client = client
        self.attrs = attrs or {}

    @property
    def resource_id(self) -> str:
        return self.attrs.get("Id", "")

    def reload(self) -> None:
        """Refresh this object's data from the engine."""
        raise NotImplementedError
