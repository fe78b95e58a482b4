"""Wallet provider — the JSON-RPC endpoint that holds the signing accounts.

Wraps an `AsyncWeb3` instance and exposes only the wallet requests the
chain client needs: account access, network inspection / switching,
contract binding and receipt polling.  A missing provider is represented
by `None` and surfaces as `WalletUnavailable` in the chain client.
"""

from __future__ import annotations

from functools import lru_cache

from web3 import AsyncWeb3
from web3.types import RPCEndpoint

# EIP-1193 / JSON-RPC error codes
USER_REJECTED_CODE = 4001
UNAUTHORIZED_CODE = 4100
DISCONNECTED_CODES = (4900, 4901)
METHOD_NOT_FOUND_CODE = -32601


def rpc_error_code(exc: BaseException) -> int | None:
    """Extract the JSON-RPC error code from a provider exception, if any."""
    response = getattr(exc, "rpc_response", None)
    if isinstance(response, dict):
        error = response.get("error")
        if isinstance(error, dict) and isinstance(error.get("code"), int):
            return error["code"]
    for arg in exc.args:
        if isinstance(arg, dict) and isinstance(arg.get("code"), int):
            return arg["code"]
    code = getattr(exc, "code", None)
    return code if isinstance(code, int) else None


class WalletProvider:
    def __init__(self, w3: AsyncWeb3):
        self.w3 = w3

    @classmethod
    def from_url(cls, rpc_url: str) -> "WalletProvider":
        return cls(AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url)))

    async def is_connected(self) -> bool:
        return await self.w3.is_connected()

    async def request_accounts(self) -> list[str]:
        """Ask the wallet for account access (eth_requestAccounts).

        Plain nodes do not implement the wallet method; for those the
        unlocked node accounts are used instead.
        """
        try:
            accounts = await self.w3.manager.coro_request(
                RPCEndpoint("eth_requestAccounts"), []
            )
        except Exception as exc:
            if rpc_error_code(exc) != METHOD_NOT_FOUND_CODE:
                raise
            accounts = await self.w3.eth.accounts
        return [str(a) for a in accounts or []]

    async def chain_id(self) -> int:
        return int(await self.w3.eth.chain_id)

    async def switch_chain(self, chain_id: int) -> None:
        await self.w3.manager.coro_request(
            RPCEndpoint("wallet_switchEthereumChain"),
            [{"chainId": hex(chain_id)}],
        )

    def contract(self, address: str, abi: list[dict]):
        return self.w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(address), abi=abi
        )

    async def wait_for_receipt(self, tx_hash, timeout: float, poll_latency: float):
        return await self.w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=timeout, poll_latency=poll_latency
        )


@lru_cache(maxsize=4)
def provider_for(rpc_url: str) -> WalletProvider | None:
    """Return a shared provider for `rpc_url`, or None when unconfigured."""
    if not rpc_url:
        return None
    return WalletProvider.from_url(rpc_url)
