"""Route and RouteMatch frozen dataclasses."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class PathSegment:
    """A parsed segment of a route path.

    Static:    ``/users``      (is_param=False)
    Param:     ``/{id}``       (is_param=True, param_name="id")
    Typed:     ``/{id:int}``   (is_param=True, param_name="id", param_type="int")
    Remainder: ``/{rest...}``  (is_param=True, param_name="rest", param_type="path")
    """

    value: str
    is_param: bool = False
    param_name: str | None = None
    param_type: str = "str"


@dataclass(frozen=True, slots=True)
class Route:
    """A registered route.

    ``endpoint`` is the handler already wrapped in its middleware chain;
    ``handler`` is the bare handler, kept for introspection.
    """

    path: str
    methods: frozenset[str]
    endpoint: Callable[[Any], Awaitable[Any]]
    handler: Callable[..., Any] | None = None
    name: str | None = None


@dataclass(frozen=True, slots=True)
class RouteMatch:
    """Result of a successful route match."""

    route: Route
    path_params: dict[str, str]
