"""
Ordered route table for host/path dispatch.

Routes are matched in declaration order and the first candidate wins.
There is no longest-prefix reordering: operators declare the more specific
host/path combinations first. This ordering is part of the table contract.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Iterator, Sequence

from .config import GateConfig, ProxyRoute
from .logs import log_json

__all__ = ["RouteMatch", "RouteTable"]


@dataclass(frozen=True)
class RouteMatch:
    route: ProxyRoute
    forward_path: str


class RouteTable:
    def __init__(self, routes: Sequence[ProxyRoute]) -> None:
        self._routes: tuple[ProxyRoute, ...] = tuple(routes)
        for host, path in self.duplicates():
            log_json(logging.WARNING, "routes.duplicate", host=host, path=path)

    @classmethod
    def from_config(cls, config: GateConfig) -> RouteTable:
        return cls(config.proxies)

    def __len__(self) -> int:
        return len(self._routes)

    def __iter__(self) -> Iterator[ProxyRoute]:
        return iter(self._routes)

    @property
    def routes(self) -> tuple[ProxyRoute, ...]:
        return self._routes

    def duplicates(self) -> list[tuple[str, str]]:
        """(host, path) pairs declared more than once; later entries never match."""
        counts = Counter((route.host, route.path) for route in self._routes)
        return [key for key, count in counts.items() if count > 1]

    def match(self, host: str, path: str) -> RouteMatch | None:
        for route in self._routes:
            if route.host and route.host != host:
                continue
            if not path.startswith(route.path):
                continue
            return RouteMatch(route=route, forward_path=_forward_path(route, path))
        return None


def _forward_path(route: ProxyRoute, path: str) -> str:
    if not route.strip_path:
        return path
    rest = path[len(route.path):]
    if not rest.startswith("/"):
        rest = "/" + rest
    return rest
