from __future__ import annotations

from abc import ABC, abstractmethod

from yetify.domain.wallet import ConnectFlow, PendingConnection, WalletSession


class WalletProvider(ABC):
    """A wallet backend; subclasses implement the hook that matches their ``flow``."""

    name: str
    flow: ConnectFlow

    def implements_flow(self) -> bool:
        hook = "request_session" if self.flow is ConnectFlow.DIRECT else "authorization_url"
        return getattr(type(self), hook) is not getattr(WalletProvider, hook)

    async def request_session(self) -> WalletSession:
        """Direct flow: ask the signer for an account without navigating away."""
        raise NotImplementedError

    def authorization_url(self, pending: PendingConnection) -> str:
        """Redirect flow: the page the user is sent to for approval."""
        del pending
        raise NotImplementedError

    @abstractmethod
    async def validate_session(self, session: WalletSession) -> bool:
        """Return ``False`` when the provider reports the session revoked.

        Transport failures propagate to the caller.
        """
        raise NotImplementedError

    @abstractmethod
    async def get_balance(self, account_id: str) -> str | None:
        raise NotImplementedError

    async def sign_out(self, session: WalletSession) -> None:
        del session

    async def close(self) -> None:
        return None
