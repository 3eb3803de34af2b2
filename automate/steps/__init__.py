"""
Automate - Combinator step handlers

parallel, forEach and while are ordinary registry handlers that dispatch
their children through the same registry, so they nest freely.
"""
from ..executor.registry import StepRegistry
from .parallel import parallel_handler
from .loop import for_each_handler, while_handler


def register_combinators(registry: StepRegistry) -> StepRegistry:
    """Register parallel / forEach / while on a registry."""
    registry.register(
        "parallel",
        parallel_handler,
        "Run listed steps concurrently",
        {
            "steps": "Ids of the steps to run",
            "onError": "stop (fail on first exception) or continue (default: stop)",
        },
    )
    registry.register(
        "forEach",
        for_each_handler,
        "Execute a step for each item in an array",
        {
            "items": "Expression resolving to an array",
            "step": "Step definition (or step id) to run per item",
            "concurrency": "Batch width (default: 1 = sequential)",
            "as": "Variable name for current item (default: 'item')",
            "indexAs": "Variable name for index (default: 'index')",
        },
    )
    registry.register(
        "while",
        while_handler,
        "Repeat a step while a condition holds",
        {
            "condition": "Expression evaluated before each iteration",
            "step": "Step definition (or step id) to run",
            "maxIterations": "Safety limit (default: 100)",
        },
    )
    return registry


__all__ = [
    "register_combinators",
    "parallel_handler",
    "for_each_handler",
    "while_handler",
]
