"""Transfer executor that delegates signing to a custodial payout relay."""
import aiohttp
from decimal import Decimal
from typing import Dict, Optional
import logging

from config.settings import TransferConfig
from services.transfer_interface import TransferExecutor
from utils.exceptions import ConfigurationError, TransferError

logger = logging.getLogger(__name__)


class RelayTransferExecutor(TransferExecutor):
    """Sends payouts through the relay's HTTP API."""

    def __init__(self, api_config: dict):
        self.base_url = (api_config.get('base_url') or '').rstrip('/')
        self.api_key = api_config.get('api_key')
        self._session: Optional[aiohttp.ClientSession] = None
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config: TransferConfig) -> "RelayTransferExecutor":
        """Create a RelayTransferExecutor from transfer settings."""
        return cls(
            api_config={
                'base_url': config.relay_url,
                'api_key': config.relay_api_key
            }
        )

    @property
    def backend_name(self) -> str:
        return "relay"

    async def initialize(self) -> None:
        """Open the HTTP session."""
        if not self.base_url or not self.api_key:
            raise ConfigurationError("COMMUNITY_POT_RELAY_URL and COMMUNITY_POT_RELAY_API_KEY are required")
        self._session = aiohttp.ClientSession()
        self.logger.info("Payout relay client initialized")

    async def close(self) -> None:
        """Cleanup resources."""
        if self._session:
            await self._session.close()
            self._session = None
        self.logger.info("Payout relay client cleaned up")

    def _get_headers(self) -> Dict[str, str]:
        """Get headers for API requests."""
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

    async def send(self, address: str, amount: Decimal, test_mode: bool) -> str:
        """Ask the relay to transfer ``amount`` and return its transaction hash."""
        if not self._session:
            await self.initialize()

        try:
            async with self._session.post(
                f"{self.base_url}/api/v1/transfers",
                headers=self._get_headers(),
                json={
                    "to": address,
                    "amount": str(amount),
                    "network": "testnet" if test_mode else "mainnet"
                }
            ) as response:
                data = await response.json(content_type=None)
                if response.status in (200, 201) and isinstance(data, dict) and data.get("transactionHash"):
                    self.logger.info(f"Relay sent {amount} to {address}: {data['transactionHash']}")
                    return data["transactionHash"]
                error = data.get("error") if isinstance(data, dict) else data
                self.logger.error(f"Relay rejected transfer to {address}: {error}")
                raise TransferError(f"Relay rejected transfer ({response.status}): {error}")
        except aiohttp.ClientError as e:
            self.logger.error(f"Error contacting payout relay for {address}: {str(e)}")
            raise TransferError(f"Payout relay unreachable: {str(e)}") from e
