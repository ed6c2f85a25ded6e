"""Fee-split hook payloads for ``depositForBurnWithHook``.

The hook contract on the destination chain splits the minted USDC
between the recipient and a charity or fee wallet. Its deployed
addresses are tracked per chain in a :py:class:`HookRegistry`,
usually loaded from a JSON file written by the deployment script::

    {
        "84532": "0x...",
        "421614": "0x..."
    }

The transfer engine does not interpret the payload, it forwards the bytes as is.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Callable

from eth_abi import encode
from eth_utils import is_address, to_checksum_address

logger = logging.getLogger(__name__)

#: Default split, 2.5%
DEFAULT_HOOK_BPS = 250

#: Hook contract refuses splits above 10%
MAX_HOOK_BPS = 1000

#: Produces hook payload bytes for a destination chain id
HookDataGenerator = Callable[[int], bytes]


def fee_split_hook_data(bps: int = DEFAULT_HOOK_BPS) -> bytes:
    """Encode the fee-split hook payload.

    :param bps:
        Share sent to the fee wallet, basis points.

    :return:
        ABI encoded ``uint256``, 32 bytes.
    """
    assert 0 <= bps <= MAX_HOOK_BPS, f"Hook fee must be between 0 and {MAX_HOOK_BPS} bps, got {bps}"
    return encode(["uint256"], [bps])


def make_fee_split_generator(bps: int = DEFAULT_HOOK_BPS) -> HookDataGenerator:
    """Generator with a fixed split for every destination."""
    payload = fee_split_hook_data(bps)
    return lambda chain_id: payload


class HookRegistry:
    """Deployed hook contract addresses per chain id."""

    def __init__(self, addresses: dict[int, str] | None = None):
        self._addresses: dict[int, str] = {}
        self._lock = threading.Lock()
        for chain_id, address in (addresses or {}).items():
            self.update(chain_id, address)

    def __repr__(self):
        return f"<HookRegistry {len(self._addresses)} chains>"

    def __len__(self):
        return len(self._addresses)

    @classmethod
    def load(cls, path: Path) -> "HookRegistry":
        """Read addresses from a JSON file.

        A missing file gives an empty registry.
        """
        if not path.exists():
            logger.info("No hook address file at %s", path)
            return cls()

        with path.open("rt", encoding="utf-8") as inp:
            data = json.load(inp)

        return cls({int(k): v for k, v in data.items()})

    def save(self, path: Path):
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            data = {str(k): v for k, v in sorted(self._addresses.items())}
        with path.open("wt", encoding="utf-8") as out:
            json.dump(data, out, indent=2)

    def update(self, chain_id: int, address: str):
        """Record a hook deployment.

        :raise ValueError:
            Not an EVM address.
        """
        if not is_address(address):
            raise ValueError(f"Invalid hook contract address for chain {chain_id}: {address}")
        with self._lock:
            self._addresses[chain_id] = to_checksum_address(address)
        logger.info("Hook contract on chain %d: %s", chain_id, address)

    def get_address(self, chain_id: int) -> str | None:
        with self._lock:
            return self._addresses.get(chain_id)

    def is_deployed(self, chain_id: int) -> bool:
        return self.get_address(chain_id) is not None
