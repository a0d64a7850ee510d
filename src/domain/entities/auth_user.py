"""Authenticated user snapshot and synchronizer state."""

from dataclasses import dataclass

from domain.entities.profile import Profile
from domain.entities.session import AuthIdentity


@dataclass(frozen=True)
class AuthUser:
    """Identity claims plus the associated (or placeholder) profile.

    A new instance is built on every reconciliation; instances are never
    modified after they are published.
    """

    identity: AuthIdentity
    profile: Profile

    @property
    def id(self) -> str:
        return self.identity.id

    @property
    def email(self) -> str | None:
        return self.identity.email


@dataclass(frozen=True)
class SynchronizerState:
    """The reactive cell read by UI consumers.

    ``loading=True`` means auth state is still being determined;
    ``loading=False, user=None`` means determined and signed out.
    """

    user: AuthUser | None = None
    loading: bool = True

    @property
    def authenticated(self) -> bool:
        return self.user is not None
