"""Shared fixtures for CCTP transfer tests."""

import pytest

from cctp_bridge.chain import ChainFamily, ChainRegistry
from cctp_bridge.cctp.attestation import AttestationClient
from cctp_bridge.cctp.evm import EVMTransferExecutor
from cctp_bridge.cctp.orchestrator import TransferOrchestrator
from cctp_bridge.cctp.solana import SolanaTransferExecutor
from cctp_bridge.cctp.store import InMemoryTransferStore
from tests.cctp.fakes import FakeEVMChainClient, FakeSolanaChainClient, ScriptedIrisSession


@pytest.fixture()
def registry() -> ChainRegistry:
    return ChainRegistry.testnet()


@pytest.fixture()
def store() -> InMemoryTransferStore:
    return InMemoryTransferStore()


@pytest.fixture()
def evm_clients() -> dict[int, FakeEVMChainClient]:
    """Fake EVM chains, created on first use."""
    return {}


@pytest.fixture()
def evm_executor(evm_clients) -> EVMTransferExecutor:
    return EVMTransferExecutor(lambda config: evm_clients.setdefault(config.chain_id, FakeEVMChainClient()))


@pytest.fixture()
def solana_client() -> FakeSolanaChainClient:
    return FakeSolanaChainClient()


@pytest.fixture()
def solana_executor(solana_client) -> SolanaTransferExecutor:
    return SolanaTransferExecutor(lambda config: solana_client)


@pytest.fixture()
def iris_session() -> ScriptedIrisSession:
    return ScriptedIrisSession()


@pytest.fixture()
def attestation_client(iris_session, store, registry) -> AttestationClient:
    return AttestationClient(iris_session, store, registry)


@pytest.fixture()
def orchestrator(registry, store, evm_executor, solana_executor, attestation_client) -> TransferOrchestrator:
    return TransferOrchestrator(
        registry=registry,
        store=store,
        executors={ChainFamily.evm: evm_executor, ChainFamily.solana: solana_executor},
        attestation_client=attestation_client,
    )
