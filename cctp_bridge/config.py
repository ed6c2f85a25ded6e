"""Bridge configuration from environment variables.

Environment variables
---------------------
- ``NETWORK``: ``testnet`` (default) or ``mainnet``
- ``IRIS_API_URL``: Override the Circle Iris API URL
- ``EVM_PRIVATE_KEY``: Hot wallet for EVM chains
- ``SOLANA_PRIVATE_KEY``: Base58 or JSON byte array keypair for Solana
- ``ATTESTATION_TIMEOUT``: Seconds to wait for an attestation (default: 1200)
- ``ATTESTATION_POLL_INTERVAL``: Seconds between Iris polls (default: 5)
- ``HOOK_ADDRESSES_FILE``: JSON file of deployed fee-split hook contracts
- ``TRANSFER_STORE_PATH``: JSON file for transfer records, in-memory if not set
- ``LOG_LEVEL``: Logging level (default: ``info``)
- ``JSON_RPC_<CHAIN_SLUG>``: RPC URL override per chain, e.g. ``JSON_RPC_BASE_SEPOLIA``
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from cctp_bridge.chain import ChainFamily, ChainRegistry
from cctp_bridge.cctp.attestation import AttestationClient
from cctp_bridge.cctp.constants import IRIS_API_BASE_URL, IRIS_API_SANDBOX_URL
from cctp_bridge.cctp.evm import EVMTransferExecutor, Web3ChainClient
from cctp_bridge.cctp.executor import TransferExecutor
from cctp_bridge.cctp.hook import HookRegistry, make_fee_split_generator
from cctp_bridge.cctp.orchestrator import TransferOrchestrator
from cctp_bridge.cctp.session import create_iris_session
from cctp_bridge.cctp.solana import SolanaRPCClient, SolanaTransferExecutor
from cctp_bridge.cctp.store import InMemoryTransferStore, JsonFileTransferStore, TransferStore
from cctp_bridge.utils import load_evm_account, load_solana_keypair

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BridgeSettings:
    """Runtime settings of the transfer engine."""

    #: ``testnet`` or ``mainnet``
    network: str = "testnet"

    iris_api_url: str = IRIS_API_SANDBOX_URL

    evm_private_key: str | None = field(default=None, repr=False)

    solana_private_key: str | None = field(default=None, repr=False)

    attestation_timeout: float = 1200.0

    attestation_poll_interval: float = 5.0

    hook_addresses_file: Path | None = None

    transfer_store_path: Path | None = None

    log_level: str = "info"

    #: Raw environment, for ``JSON_RPC_*`` lookups
    rpc_overrides: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls, env: Mapping[str, str] = os.environ) -> "BridgeSettings":
        """Read settings from environment variables."""
        network = env.get("NETWORK", "testnet").lower()
        assert network in ("testnet", "mainnet"), f"NETWORK must be 'testnet' or 'mainnet', got '{network}'"

        default_iris = IRIS_API_SANDBOX_URL if network == "testnet" else IRIS_API_BASE_URL

        hook_file = env.get("HOOK_ADDRESSES_FILE")
        store_path = env.get("TRANSFER_STORE_PATH")

        return cls(
            network=network,
            iris_api_url=env.get("IRIS_API_URL") or default_iris,
            evm_private_key=env.get("EVM_PRIVATE_KEY") or None,
            solana_private_key=env.get("SOLANA_PRIVATE_KEY") or None,
            attestation_timeout=float(env.get("ATTESTATION_TIMEOUT", "1200")),
            attestation_poll_interval=float(env.get("ATTESTATION_POLL_INTERVAL", "5")),
            hook_addresses_file=Path(hook_file).expanduser() if hook_file else None,
            transfer_store_path=Path(store_path).expanduser() if store_path else None,
            log_level=env.get("LOG_LEVEL", "info"),
            rpc_overrides={k: v for k, v in env.items() if k.startswith("JSON_RPC_")},
        )

    def create_registry(self) -> ChainRegistry:
        # Only testnet deployments are bundled
        assert self.network == "testnet", "Mainnet chain configs must be passed explicitly"
        return ChainRegistry.testnet().with_rpc_overrides(self.rpc_overrides)

    def create_store(self) -> TransferStore:
        if self.transfer_store_path:
            return JsonFileTransferStore(self.transfer_store_path)
        logger.info("TRANSFER_STORE_PATH not set, transfer records are kept in memory only")
        return InMemoryTransferStore()

    def create_executors(self) -> dict[ChainFamily, TransferExecutor]:
        """Executors for the chain families we have keys for."""
        executors = {}
        if self.evm_private_key:
            account = load_evm_account(self.evm_private_key)
            logger.info("EVM hot wallet: %s", account.address)
            executors[ChainFamily.evm] = EVMTransferExecutor(lambda config: Web3ChainClient.from_config(config, account))
        if self.solana_private_key:
            keypair = load_solana_keypair(self.solana_private_key)
            logger.info("Solana payer: %s", keypair.pubkey())
            executors[ChainFamily.solana] = SolanaTransferExecutor(lambda config: SolanaRPCClient.from_config(config, keypair))
        return executors

    def create_orchestrator(self) -> TransferOrchestrator:
        """Wire up the transfer engine from these settings."""
        registry = self.create_registry()
        store = self.create_store()

        hook_registry = None
        if self.hook_addresses_file:
            hook_registry = HookRegistry.load(self.hook_addresses_file)

        attestation_client = AttestationClient(create_iris_session(self.iris_api_url), store, registry)

        return TransferOrchestrator(
            registry=registry,
            store=store,
            executors=self.create_executors(),
            attestation_client=attestation_client,
            hook_registry=hook_registry,
            hook_data_generator=make_fee_split_generator() if hook_registry else None,
        )
