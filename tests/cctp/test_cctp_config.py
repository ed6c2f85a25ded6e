"""Chain registry, settings and key loading."""

import json
from pathlib import Path

import base58
import pytest
from solders.keypair import Keypair

from cctp_bridge.chain import ChainFamily, ChainRegistry
from cctp_bridge.cctp.constants import IRIS_API_BASE_URL, IRIS_API_SANDBOX_URL
from cctp_bridge.cctp.errors import UnsupportedChain
from cctp_bridge.cctp.evm import EVMTransferExecutor
from cctp_bridge.cctp.solana import SolanaTransferExecutor
from cctp_bridge.cctp.store import InMemoryTransferStore, JsonFileTransferStore
from cctp_bridge.config import BridgeSettings
from cctp_bridge.utils import load_evm_account, load_solana_keypair

#: Anvil test account 0
EVM_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"


def test_testnet_registry(registry):
    base = registry.get(84532)
    assert base.domain == 6
    assert base.family == ChainFamily.evm
    assert base.get_finality_threshold("fast") == 1000
    assert base.get_finality_threshold("standard") == 2000

    solana = registry.by_domain(5)
    assert solana.chain_id == 103
    assert solana.family == ChainFamily.solana

    assert 421614 in registry
    assert 1 not in registry


def test_unsupported_chain(registry):
    with pytest.raises(UnsupportedChain):
        registry.get(1)
    with pytest.raises(UnsupportedChain):
        registry.by_domain(999)


def test_rpc_overrides(registry):
    overridden = registry.with_rpc_overrides({"JSON_RPC_BASE_SEPOLIA": "http://localhost:8545"})
    assert overridden.get(84532).rpc_url == "http://localhost:8545"
    assert overridden.get(421614).rpc_url == registry.get(421614).rpc_url
    assert len(overridden) == len(registry)


def test_duplicate_chain_ids():
    base = ChainRegistry.testnet().get(84532)
    with pytest.raises(AssertionError):
        ChainRegistry([base, base])


def test_settings_defaults():
    settings = BridgeSettings.from_env({})
    assert settings.network == "testnet"
    assert settings.iris_api_url == IRIS_API_SANDBOX_URL
    assert settings.evm_private_key is None
    assert isinstance(settings.create_store(), InMemoryTransferStore)
    assert settings.create_executors() == {}


def test_settings_mainnet_iris():
    settings = BridgeSettings.from_env({"NETWORK": "mainnet"})
    assert settings.iris_api_url == IRIS_API_BASE_URL


def test_settings_wiring(tmp_path: Path):
    keypair = Keypair()
    settings = BridgeSettings.from_env(
        {
            "EVM_PRIVATE_KEY": EVM_PRIVATE_KEY,
            "SOLANA_PRIVATE_KEY": base58.b58encode(bytes(keypair)).decode("ascii"),
            "TRANSFER_STORE_PATH": str(tmp_path / "transfers.json"),
            "ATTESTATION_TIMEOUT": "60",
            "JSON_RPC_ARBITRUM_SEPOLIA": "http://localhost:8546",
        }
    )
    assert settings.attestation_timeout == 60.0
    assert EVM_PRIVATE_KEY not in repr(settings)

    executors = settings.create_executors()
    assert isinstance(executors[ChainFamily.evm], EVMTransferExecutor)
    assert isinstance(executors[ChainFamily.solana], SolanaTransferExecutor)

    orchestrator = settings.create_orchestrator()
    assert isinstance(orchestrator.store, JsonFileTransferStore)
    assert orchestrator.registry.get(421614).rpc_url == "http://localhost:8546"
    assert orchestrator.hook_registry is None


def test_load_evm_account():
    account = load_evm_account(EVM_PRIVATE_KEY[2:])
    assert account.address == "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


def test_load_solana_keypair_formats():
    keypair = Keypair()
    secret = bytes(keypair)
    assert load_solana_keypair(base58.b58encode(secret).decode("ascii")).pubkey() == keypair.pubkey()
    assert load_solana_keypair(json.dumps(list(secret))).pubkey() == keypair.pubkey()

    with pytest.raises(ValueError):
        load_solana_keypair(base58.b58encode(secret[:32]).decode("ascii"))
