from __future__ import annotations

from dataclasses import dataclass

from .config import GateConfig


@dataclass(frozen=True)
class AccessPolicy:
    """Allowed account domains plus the session cookie scope.

    An empty restriction list means every authenticated identity is allowed.
    """

    restrictions: tuple[str, ...] = ()
    cookie_domain: str | None = None

    @classmethod
    def from_config(cls, config: GateConfig) -> AccessPolicy:
        return cls(
            restrictions=config.restrictions,
            cookie_domain=config.auth.session.cookie_domain or None,
        )

    @property
    def unrestricted(self) -> bool:
        return not self.restrictions

    def is_allowed(self, identifier: str) -> bool:
        if not self.restrictions:
            return True
        folded = identifier.lower()
        return any(folded.endswith(domain.lower()) for domain in self.restrictions)
