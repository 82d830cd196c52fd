"""Path parameter converters.

Built-in converters for route path segments like ``{id:int}``. The
captured value always reaches the handler as a string through
``ctx.path_value()``; the converter only decides what a segment may look
like for the route to match.
"""

# Regex pattern each converter accepts for one path segment
CONVERTERS: dict[str, str] = {
    "str": r"[^/]+",
    "int": r"[0-9]+",
    "float": r"[0-9]+(?:\.[0-9]+)?",
    "path": r".+",
}
