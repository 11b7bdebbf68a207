"""ERC-20 transfer executor backed by web3.py."""
import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from web3 import AsyncWeb3, AsyncHTTPProvider
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from config.settings import TransferConfig
from services.distribution import to_minor_units
from services.transfer_interface import TransferExecutor
from utils.exceptions import ConfigurationError, TransferError

logger = logging.getLogger(__name__)

ERC20_TRANSFER_ABI = [
    {
        "constant": False,
        "inputs": [
            {"name": "_to", "type": "address"},
            {"name": "_value", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

NONCE_ERROR_MARKERS = ("nonce", "replacement transaction underpriced")


class Erc20TransferExecutor(TransferExecutor):
    """Signs and sends token transfers from the payout wallet."""

    def __init__(self, config: TransferConfig, max_retries: int = 3):
        self.config = config
        self.max_retries = max_retries
        self._clients: Dict[bool, AsyncWeb3] = {}
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config: TransferConfig) -> "Erc20TransferExecutor":
        return cls(config)

    @property
    def backend_name(self) -> str:
        return "erc20"

    def _rpc_url(self, test_mode: bool) -> str:
        url = self.config.testnet_rpc_url if test_mode else self.config.rpc_url
        if not url:
            network = "testnet" if test_mode else "mainnet"
            raise ConfigurationError(f"RPC URL for {network} is not configured")
        return url

    def _private_key(self) -> str:
        key = self.config.private_key
        if not key:
            raise ConfigurationError("COMMUNITY_POT_PAYOUT_PRIVATE_KEY is not configured")
        return key if key.startswith("0x") else f"0x{key}"

    def _client(self, test_mode: bool) -> AsyncWeb3:
        """Get the web3 client for a network, creating it on first use."""
        client = self._clients.get(test_mode)
        if client is None:
            client = AsyncWeb3(AsyncHTTPProvider(self._rpc_url(test_mode)))
            self._clients[test_mode] = client
        return client

    async def send(self, address: str, amount: Decimal, test_mode: bool) -> str:
        w3 = self._client(test_mode)
        account = w3.eth.account.from_key(self._private_key())
        token = self.config.testnet_token_contract if test_mode else self.config.token_contract
        contract = w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(token),
            abi=ERC20_TRANSFER_ABI
        )
        units = to_minor_units(amount, self.config.token_decimals)
        function = contract.functions.transfer(AsyncWeb3.to_checksum_address(address), units)

        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                return await self._send_once(w3, account, function)
            except ContractLogicError as e:
                self.logger.error(f"Contract rejected transfer to {address}: {e}")
                raise TransferError(f"Contract rejected transfer: {e}") from e
            except TimeExhausted as e:
                raise TransferError(f"No receipt for transfer to {address}: {e}") from e
            except (Web3Exception, ValueError) as e:
                message = str(e).lower()
                if any(marker in message for marker in NONCE_ERROR_MARKERS) and attempt < self.max_retries - 1:
                    self.logger.warning(
                        f"Nonce conflict, retrying... (attempt {attempt + 2}/{self.max_retries})"
                    )
                    last_error = e
                    await asyncio.sleep(1)
                    continue
                raise TransferError(f"Transfer to {address} failed: {e}") from e

        raise TransferError(f"Transfer to {address} failed after {self.max_retries} attempts: {last_error}")

    async def _send_once(self, w3: AsyncWeb3, account, function) -> str:
        sender = account.address
        nonce = await w3.eth.get_transaction_count(sender, "pending")

        try:
            estimated_gas = await function.estimate_gas({"from": sender})
            gas_limit = int(estimated_gas * self.config.gas_multiplier)
        except (Web3Exception, ValueError) as e:
            self.logger.warning(
                f"Gas estimation failed: {e}. Using default {self.config.default_gas_limit}"
            )
            gas_limit = self.config.default_gas_limit

        transaction: Dict[str, Any] = await function.build_transaction({
            "from": sender,
            "nonce": nonce,
            "gas": gas_limit,
            "gasPrice": await w3.eth.gas_price,
            "chainId": await w3.eth.chain_id,
        })
        signed = account.sign_transaction(transaction)
        tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
        transfer_id = tx_hash.to_0x_hex()
        self.logger.info(f"Transaction sent: {transfer_id}")

        receipt = await w3.eth.wait_for_transaction_receipt(
            tx_hash,
            timeout=self.config.receipt_timeout_seconds
        )
        if receipt["status"] == 0:
            raise TransferError("Transfer reverted on-chain", transfer_id=transfer_id)

        self.logger.info(f"Transaction {transfer_id} confirmed in block {receipt['blockNumber']}")
        return transfer_id

    async def close(self) -> None:
        self._clients.clear()
