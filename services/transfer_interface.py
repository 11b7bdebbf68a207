"""Transfer executor interface definitions."""
from abc import ABC, abstractmethod
from decimal import Decimal

EXPLORER_URLS = {
    False: "https://polygonscan.com/tx/",
    True: "https://amoy.polygonscan.com/tx/",
}


def explorer_url(transfer_id: str, test_mode: bool) -> str:
    """Block explorer link for a transfer id."""
    return f"{EXPLORER_URLS[test_mode]}{transfer_id}"


class TransferExecutor(ABC):
    """Abstract interface for the external network that moves the money."""

    @abstractmethod
    async def send(self, address: str, amount: Decimal, test_mode: bool) -> str:
        """Send ``amount`` to ``address`` and return the transfer id.

        Raises:
            TransferError: If the transfer was rejected or did not settle
        """
        pass

    async def close(self) -> None:
        """Release network resources."""
        pass

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Get the name of this executor."""
        pass
