"""Chain configuration for CCTP enabled chains.

Each chain is described by a :py:class:`ChainConfig`. The chain family tag
selects the transfer executor once, so call sites never branch on
"is this Solana".

Built-in configurations cover the CCTP V2 testnets. Use
:py:meth:`ChainRegistry.with_rpc_overrides` to plug in private RPC endpoints::

    registry = ChainRegistry.testnet().with_rpc_overrides(os.environ)
    base = registry.get(84532)
"""

import enum
import logging
from dataclasses import dataclass, replace
from typing import Iterable, Mapping

from cctp_bridge.cctp.constants import (
    CCTP_DOMAIN_ARBITRUM,
    CCTP_DOMAIN_AVALANCHE,
    CCTP_DOMAIN_BASE,
    CCTP_DOMAIN_CODEX,
    CCTP_DOMAIN_ETHEREUM,
    CCTP_DOMAIN_LINEA,
    CCTP_DOMAIN_OPTIMISM,
    CCTP_DOMAIN_POLYGON,
    CCTP_DOMAIN_SEI,
    CCTP_DOMAIN_SOLANA,
    CCTP_DOMAIN_SONIC,
    CCTP_DOMAIN_UNICHAIN,
    CCTP_DOMAIN_WORLDCHAIN,
    EVM_TESTNET_MESSAGE_TRANSMITTER,
    EVM_TESTNET_TOKEN_MESSENGER,
    FINALITY_THRESHOLD_FAST,
    FINALITY_THRESHOLD_STANDARD,
    SOLANA_DEVNET_USDC_MINT,
    SOLANA_MESSAGE_TRANSMITTER_PROGRAM_ID,
    SOLANA_TOKEN_MESSENGER_MINTER_PROGRAM_ID,
)
from cctp_bridge.cctp.errors import UnsupportedChain

logger = logging.getLogger(__name__)


class ChainFamily(enum.Enum):
    """How transactions are built on a chain."""

    #: Account-based EVM chains, contract calls via web3
    evm = "evm"

    #: Solana, program derived addresses and hand-encoded Anchor instructions
    solana = "solana"


@dataclass(slots=True, frozen=True)
class ChainConfig:
    """CCTP deployment on a single chain."""

    #: Native chain id. Solana devnet uses 103 by convention.
    chain_id: int

    #: Human readable name
    name: str

    #: Slug used in ``JSON_RPC_<SLUG>`` environment variables
    slug: str

    rpc_url: str

    #: CCTP domain, not the same as the chain id
    domain: int

    #: USDC token contract, or SPL mint on Solana
    usdc_address: str

    #: TokenMessengerV2 contract, or TokenMessengerMinter program on Solana
    token_messenger_address: str

    #: MessageTransmitterV2 contract, or MessageTransmitter program on Solana
    message_transmitter_address: str

    family: ChainFamily = ChainFamily.evm

    fast_finality_threshold: int = FINALITY_THRESHOLD_FAST

    standard_finality_threshold: int = FINALITY_THRESHOLD_STANDARD

    is_testnet: bool = True

    def get_finality_threshold(self, transfer_type: str) -> int:
        """Map ``"fast"`` or ``"standard"`` to ``minFinalityThreshold``."""
        if transfer_type == "fast":
            return self.fast_finality_threshold
        elif transfer_type == "standard":
            return self.standard_finality_threshold
        raise ValueError(f"Unknown transfer type: {transfer_type}")


def _evm_testnet(chain_id: int, name: str, slug: str, rpc_url: str, domain: int, usdc: str) -> ChainConfig:
    return ChainConfig(
        chain_id=chain_id,
        name=name,
        slug=slug,
        rpc_url=rpc_url,
        domain=domain,
        usdc_address=usdc,
        token_messenger_address=EVM_TESTNET_TOKEN_MESSENGER,
        message_transmitter_address=EVM_TESTNET_MESSAGE_TRANSMITTER,
    )


#: Solana devnet chain id used by Circle sample apps
SOLANA_DEVNET_CHAIN_ID = 103

#: CCTP V2 testnet deployments
TESTNET_CHAINS: tuple[ChainConfig, ...] = (
    _evm_testnet(11155111, "Ethereum Sepolia", "ethereum_sepolia", "https://ethereum-sepolia-rpc.publicnode.com", CCTP_DOMAIN_ETHEREUM, "0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238"),
    _evm_testnet(43113, "Avalanche Fuji", "avalanche_fuji", "https://api.avax-test.network/ext/bc/C/rpc", CCTP_DOMAIN_AVALANCHE, "0x5425890298aed601595a70AB815c96711a31Bc65"),
    _evm_testnet(11155420, "Optimism Sepolia", "optimism_sepolia", "https://sepolia.optimism.io", CCTP_DOMAIN_OPTIMISM, "0x5fd84259d66Cd46123540766Be93DFE6D43130D7"),
    _evm_testnet(421614, "Arbitrum Sepolia", "arbitrum_sepolia", "https://sepolia-rollup.arbitrum.io/rpc", CCTP_DOMAIN_ARBITRUM, "0x75faf114eafb1BDbe2F0316DF893fd58CE46AA4d"),
    _evm_testnet(84532, "Base Sepolia", "base_sepolia", "https://sepolia.base.org", CCTP_DOMAIN_BASE, "0x036CbD53842c5426634e7929541eC2318f3dCF7e"),
    _evm_testnet(80002, "Polygon Amoy", "polygon_amoy", "https://rpc-amoy.polygon.technology", CCTP_DOMAIN_POLYGON, "0x41E94Eb019C0762f9Bfcf9Fb1E58725BfB0e7582"),
    _evm_testnet(1301, "Unichain Sepolia", "unichain_sepolia", "https://sepolia.unichain.org", CCTP_DOMAIN_UNICHAIN, "0x31d0220469e10c4E71834a79b1f276d740d3768F"),
    _evm_testnet(59141, "Linea Sepolia", "linea_sepolia", "https://rpc.sepolia.linea.build", CCTP_DOMAIN_LINEA, "0xFEce4462D57bD51A6A552365A011b95f0E16d9B7"),
    _evm_testnet(812242, "Codex Testnet", "codex_testnet", "https://812242.rpc.thirdweb.com", CCTP_DOMAIN_CODEX, "0x6d7f141b6819C2c9CC2f818e6ad549E7Ca090F8f"),
    _evm_testnet(57054, "Sonic Blaze", "sonic_blaze", "https://rpc.blaze.soniclabs.com", CCTP_DOMAIN_SONIC, "0xA4879Fed32Ecbef99399e5cbC247E533421C4eC6"),
    _evm_testnet(4801, "World Chain Sepolia", "worldchain_sepolia", "https://worldchain-sepolia.g.alchemy.com/public", CCTP_DOMAIN_WORLDCHAIN, "0x66145f38cBAC35Ca6F1Dfb4914dF98F1614aeA88"),
    _evm_testnet(1328, "Sei Testnet", "sei_testnet", "https://evm-rpc-testnet.sei-apis.com", CCTP_DOMAIN_SEI, "0x4fCF1784B31630811181f670Aea7A7bEF803eaED"),
    ChainConfig(
        chain_id=SOLANA_DEVNET_CHAIN_ID,
        name="Solana Devnet",
        slug="solana_devnet",
        rpc_url="https://api.devnet.solana.com",
        domain=CCTP_DOMAIN_SOLANA,
        usdc_address=SOLANA_DEVNET_USDC_MINT,
        token_messenger_address=SOLANA_TOKEN_MESSENGER_MINTER_PROGRAM_ID,
        message_transmitter_address=SOLANA_MESSAGE_TRANSMITTER_PROGRAM_ID,
        family=ChainFamily.solana,
    ),
)


class ChainRegistry:
    """Lookup of supported chains by chain id or CCTP domain."""

    def __init__(self, chains: Iterable[ChainConfig]):
        self._chains: dict[int, ChainConfig] = {}
        for chain in chains:
            assert chain.chain_id not in self._chains, f"Duplicate chain id {chain.chain_id}"
            self._chains[chain.chain_id] = chain

    @classmethod
    def testnet(cls) -> "ChainRegistry":
        """Registry with all built-in CCTP V2 testnets."""
        return cls(TESTNET_CHAINS)

    def __contains__(self, chain_id: int) -> bool:
        return self.is_supported(chain_id)

    def __iter__(self):
        return iter(self._chains.values())

    def __len__(self) -> int:
        return len(self._chains)

    def is_supported(self, chain_id: int) -> bool:
        return chain_id in self._chains

    def get(self, chain_id: int) -> ChainConfig:
        """Get chain config.

        :raise UnsupportedChain:
            If the chain is not configured.
        """
        try:
            return self._chains[chain_id]
        except KeyError:
            raise UnsupportedChain(f"Unsupported chain id: {chain_id}") from None

    def by_domain(self, domain: int) -> ChainConfig:
        """Get chain config by CCTP domain.

        :raise UnsupportedChain:
            If no configured chain uses this domain.
        """
        for chain in self._chains.values():
            if chain.domain == domain:
                return chain
        raise UnsupportedChain(f"No chain configured for CCTP domain {domain}")

    def with_rpc_overrides(self, env: Mapping[str, str]) -> "ChainRegistry":
        """Replace RPC URLs from ``JSON_RPC_<SLUG>`` variables.

        :param env:
            Usually ``os.environ``.
        """
        chains = []
        for chain in self._chains.values():
            rpc_url = env.get(f"JSON_RPC_{chain.slug.upper()}")
            if rpc_url:
                logger.info("Using custom RPC for %s", chain.name)
                chain = replace(chain, rpc_url=rpc_url)
            chains.append(chain)
        return ChainRegistry(chains)
