"""Compiled router with trie-based path matching.

Routes are registered during setup and compiled into an immutable
lookup structure when the server freezes.

Pattern syntax::

    /users                 static
    /users/{id}            one segment, captured as "id"
    /users/{id:int}        one segment that must match the int converter
    /files/{rest...}       the remaining path, captured as "rest"
    /files/{rest:path}     same as above
"""

import re
from dataclasses import dataclass

from sluice.errors import ConfigurationError, MethodNotAllowed, NotFound
from sluice.routing.params import CONVERTERS
from sluice.routing.route import PathSegment, Route, RouteMatch

_PARAM_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def parse_path(path: str) -> list[PathSegment]:
    """Parse a route path string into segments.

    Examples::

        "/users"             -> [PathSegment("users")]
        "/users/{id}"        -> [PathSegment("users"), PathSegment("{id}", is_param=True, ...)]
        "/users/{id:int}"    -> [..., PathSegment("{id:int}", is_param=True, param_type="int")]
        "/files/{rest...}"   -> [..., PathSegment("{rest...}", is_param=True, param_type="path")]

    Raises ``ConfigurationError`` for a path that doesn't start with
    ``/``, an unknown converter, a bad parameter name, or a remainder
    parameter that isn't last.
    """
    if not path.startswith("/"):
        msg = f"Route path must start with '/': {path!r}"
        raise ConfigurationError(msg)

    segments: list[PathSegment] = []
    for part in path.strip("/").split("/"):
        if not part:
            continue
        if segments and segments[-1].param_type == "path":
            msg = f"Remainder parameter must be the last segment: {path!r}"
            raise ConfigurationError(msg)
        if not (part.startswith("{") and part.endswith("}")):
            if "{" in part or "}" in part:
                msg = f"Path segment mixes literal text and a parameter: {part!r}"
                raise ConfigurationError(msg)
            segments.append(PathSegment(value=part))
            continue

        inner = part[1:-1]
        if inner.endswith("..."):
            param_name, param_type = inner[:-3], "path"
        elif ":" in inner:
            param_name, param_type = inner.split(":", 1)
        else:
            param_name, param_type = inner, "str"
        if not _PARAM_NAME_RE.fullmatch(param_name):
            msg = f"Invalid path parameter name {param_name!r} in {path!r}"
            raise ConfigurationError(msg)
        if param_type not in CONVERTERS:
            msg = f"Unknown path converter {param_type!r} in {path!r}"
            raise ConfigurationError(msg)
        segments.append(
            PathSegment(
                value=part,
                is_param=True,
                param_name=param_name,
                param_type=param_type,
            )
        )
    return segments


class _TrieNode:
    """A node in the route trie. Mutable during compilation only."""

    __slots__ = ("catch_all_route", "children", "param_child", "routes_by_method")

    def __init__(self) -> None:
        # Static segment children: "users" -> node
        self.children: dict[str, _TrieNode] = {}
        # Single parameter child (only one param pattern per level)
        self.param_child: _ParamEdge | None = None
        # Catch-all route (path converter)
        self.catch_all_route: _CatchAllEdge | None = None
        # Routes at this node, keyed by HTTP method
        self.routes_by_method: dict[str, Route] = {}


@dataclass(slots=True)
class _ParamEdge:
    """A parameter edge in the trie."""

    param_name: str
    param_type: str
    regex: re.Pattern[str]
    node: _TrieNode


@dataclass(slots=True)
class _CatchAllEdge:
    """A catch-all (path) edge — consumes remaining path."""

    param_name: str
    route_by_method: dict[str, Route]


def _register(table: dict[str, Route], route: Route) -> None:
    for method in route.methods:
        existing = table.get(method)
        if existing is not None:
            msg = f"Route {method} {route.path!r} conflicts with {method} {existing.path!r}"
            raise ConfigurationError(msg)
        table[method] = route


class Router:
    """Compiled router with trie-based path matching.

    Usage::

        router = Router()
        router.add(Route("/users", frozenset({"GET"}), endpoint))
        router.add(Route("/users/{id:int}", frozenset({"GET"}), endpoint))
        router.compile()
        match = router.match("GET", "/users/42")

    A ``HEAD`` request falls back to the ``GET`` route of the same path.
    """

    __slots__ = ("_compiled", "_root")

    def __init__(self) -> None:
        self._root = _TrieNode()
        self._compiled = False

    @property
    def compiled(self) -> bool:
        return self._compiled

    def add(self, route: Route) -> None:
        """Add a route to the router. Must be called before compile().

        Raises ``ConfigurationError`` when the same method is already
        registered for an equivalent path, or when a parameter at this
        position was declared with another name or converter.
        """
        if self._compiled:
            msg = "Cannot add routes after compilation."
            raise RuntimeError(msg)

        segments = parse_path(route.path)
        node = self._root

        for seg in segments:
            if seg.is_param and seg.param_type == "path":
                # Catch-all: consumes rest of path, must be last segment
                name = seg.param_name or "path"
                if node.catch_all_route is None:
                    node.catch_all_route = _CatchAllEdge(param_name=name, route_by_method={})
                elif node.catch_all_route.param_name != name:
                    msg = (
                        f"Parameter {{{name}...}} in {route.path!r} conflicts with "
                        f"{{{node.catch_all_route.param_name}...}}"
                    )
                    raise ConfigurationError(msg)
                _register(node.catch_all_route.route_by_method, route)
                return

            if seg.is_param:
                name = seg.param_name or ""
                if node.param_child is None:
                    node.param_child = _ParamEdge(
                        param_name=name,
                        param_type=seg.param_type,
                        regex=re.compile(f"^{CONVERTERS[seg.param_type]}$"),
                        node=_TrieNode(),
                    )
                elif (node.param_child.param_name, node.param_child.param_type) != (
                    name,
                    seg.param_type,
                ):
                    msg = (
                        f"Parameter {seg.value} in {route.path!r} conflicts with "
                        f"{{{node.param_child.param_name}:{node.param_child.param_type}}}"
                    )
                    raise ConfigurationError(msg)
                node = node.param_child.node
            else:
                if seg.value not in node.children:
                    node.children[seg.value] = _TrieNode()
                node = node.children[seg.value]

        _register(node.routes_by_method, route)

    @property
    def routes(self) -> list[Route]:
        """Return all registered routes.

        Traverses the trie to collect every unique Route object.
        """
        seen: set[int] = set()
        result: list[Route] = []
        self._collect_routes(self._root, seen, result)
        return result

    def _collect_routes(
        self,
        node: _TrieNode,
        seen: set[int],
        result: list[Route],
    ) -> None:
        tables = [node.routes_by_method]
        if node.catch_all_route is not None:
            tables.append(node.catch_all_route.route_by_method)
        for table in tables:
            for route in table.values():
                if id(route) not in seen:
                    seen.add(id(route))
                    result.append(route)

        for child in node.children.values():
            self._collect_routes(child, seen, result)

        if node.param_child is not None:
            self._collect_routes(node.param_child.node, seen, result)

    def compile(self) -> None:
        """Freeze the router. No more routes can be added."""
        self._compiled = True

    def match(self, method: str, path: str) -> RouteMatch:
        """Match a request path and method against compiled routes.

        Returns a ``RouteMatch`` on success.
        Raises ``NotFound`` if no route matches the path.
        Raises ``MethodNotAllowed`` if the path matches but the method doesn't.
        """
        parts = [p for p in path.strip("/").split("/") if p]
        result = self._match_node(self._root, parts, 0, {})

        if result is None:
            raise NotFound(f"No route matches {method} {path!r}")

        table, params = result

        route = table.get(method)
        if route is None and method == "HEAD":
            route = table.get("GET")
        if route is not None:
            return RouteMatch(route=route, path_params=params)

        allowed = set(table)
        if "GET" in allowed:
            allowed.add("HEAD")
        raise MethodNotAllowed(frozenset(allowed))

    def _match_node(
        self,
        node: _TrieNode,
        parts: list[str],
        index: int,
        params: dict[str, str],
    ) -> tuple[dict[str, Route], dict[str, str]] | None:
        """Recursively match path parts against the trie."""
        # All parts consumed
        if index == len(parts):
            if node.routes_by_method:
                return node.routes_by_method, params
            return None

        part = parts[index]

        # 1. Try static child first (exact match)
        if part in node.children:
            result = self._match_node(node.children[part], parts, index + 1, params)
            if result is not None:
                return result

        # 2. Try parameter child
        if node.param_child is not None:
            edge = node.param_child
            if edge.regex.match(part):
                new_params = {**params, edge.param_name: part}
                result = self._match_node(edge.node, parts, index + 1, new_params)
                if result is not None:
                    return result

        # 3. Try catch-all
        if node.catch_all_route is not None:
            remaining = "/".join(parts[index:])
            new_params = {**params, node.catch_all_route.param_name: remaining}
            return node.catch_all_route.route_by_method, new_params

        return None
