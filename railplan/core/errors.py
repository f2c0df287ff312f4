from __future__ import annotations

from typing import Optional


class RailPlanError(Exception):
    """Base exception for all network, route and timetable errors."""


class NotFound(RailPlanError, KeyError):
    """Raised when a node, segment, line or platform id does not exist."""

    def __init__(self, kind: str, ident: object) -> None:
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} {ident!r} not found")

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return str(self.args[0])


class InvalidNetwork(RailPlanError, ValueError):
    """Raised when a graph edit would produce an inconsistent network."""


class RouteError(RailPlanError):
    """Base class for route resolution failures."""


class NoPathFound(RouteError):
    """Raised when two nodes are not connected by usable infrastructure."""

    def __init__(self, source: str, target: str, reason: str = "") -> None:
        self.source = source
        self.target = target
        super().__init__(reason or f"no path from {source!r} to {target!r}")


class StaleRoute(RouteError):
    """Raised when a route references graph elements that no longer exist or connect."""

    def __init__(self, message: str, position: Optional[int] = None) -> None:
        self.position = position
        super().__init__(message)


class InvalidSchedule(RailPlanError, ValueError):
    """Raised when a schedule configuration or stop timing is contradictory."""


class SnapshotError(RailPlanError, ValueError):
    """Raised when a stored project cannot be read or upgraded."""
