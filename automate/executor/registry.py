"""
Automate - Step Registry

Maps action names to step handlers.

Lookup order for an action string:
    1. exact name          ("parallel", "forEach", "http.get")
    2. prefix before "."   ("http.get" -> "http")
"""
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union, TYPE_CHECKING

from .models import StepResult

if TYPE_CHECKING:
    from ..presets.models import PresetStep
    from .context import StepContext

StepHandler = Callable[
    ["PresetStep", "StepContext"],
    Union[StepResult, Awaitable[StepResult]],
]


@dataclass
class HandlerSpec:
    """A registered handler and its metadata."""
    name: str
    handler: StepHandler
    description: str = ""
    # param name -> description
    parameters: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (without handler)."""
        return {"name": self.name, "description": self.description, "parameters": self.parameters}


class StepRegistry:
    """
    Step Registry - handlers for non built-in actions.

    Operations:
        - register(): Add handler under an exact action or a prefix
        - resolve(): Find the handler for an action string
        - list(): List all handlers
    """

    def __init__(self):
        self._handlers: Dict[str, HandlerSpec] = {}

    def register(
        self,
        name: str,
        handler: StepHandler,
        description: str = "",
        parameters: Optional[Dict[str, str]] = None,
    ) -> HandlerSpec:
        """
        Register a handler.

        Args:
            name: Exact action ("forEach") or prefix ("http" for "http.get")
            handler: Callable(step, ctx) returning a StepResult (may be async)
            description: Short description for listings
            parameters: Param name -> description

        Returns:
            Created HandlerSpec
        """
        if not name:
            raise ValueError("Handler name must not be empty")
        spec = HandlerSpec(name=name, handler=handler, description=description, parameters=dict(parameters or {}))
        self._handlers[name] = spec
        return spec

    def unregister(self, name: str) -> bool:
        """
        Remove handler from registry.

        Returns:
            True if removed, False if not found
        """
        if name in self._handlers:
            del self._handlers[name]
            return True
        return False

    def get(self, name: str) -> Optional[HandlerSpec]:
        """Get handler by exact name."""
        return self._handlers.get(name)

    def resolve_spec(self, action: str) -> Optional[HandlerSpec]:
        spec = self._handlers.get(action)
        if spec is not None:
            return spec
        prefix = action.split(".", 1)[0]
        if prefix != action:
            return self._handlers.get(prefix)
        return None

    def resolve(self, action: str) -> Optional[StepHandler]:
        """Handler for an action: exact match first, then the prefix before the first dot."""
        spec = self.resolve_spec(action)
        return spec.handler if spec else None

    def exists(self, action: str) -> bool:
        return self.resolve_spec(action) is not None

    def list(self) -> List[HandlerSpec]:
        return list(self._handlers.values())

    def list_names(self) -> List[str]:
        return list(self._handlers.keys())

    def clear(self) -> None:
        """Remove all handlers from registry."""
        self._handlers.clear()


# Global registry instance
registry = StepRegistry()
