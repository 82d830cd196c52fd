"""Routing — compiled route table with O(path-depth) matching.

Each ``Server`` owns one ``Router``. Routes are registered during setup
and the table is frozen when the server starts handling requests.
"""

from sluice.routing.route import Route, RouteMatch
from sluice.routing.router import Router, parse_path

__all__ = ["Route", "RouteMatch", "Router", "parse_path"]
