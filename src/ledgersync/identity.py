"""Identity port: who is calling."""

from abc import ABC, abstractmethod

DEFAULT_OWNER_ID = "default"


class IdentityPort(ABC):
    """Resolves the authenticated caller."""

    @abstractmethod
    def current_owner_id(self) -> str | None:
        """Return the caller's owner id, or None if nobody is authenticated."""
        pass


class StaticIdentity(IdentityPort):
    """A fixed owner, for single-user deployments and the CLI."""

    def __init__(self, owner_id: str | None = DEFAULT_OWNER_ID) -> None:
        self.owner_id = owner_id

    def current_owner_id(self) -> str | None:
        return self.owner_id
