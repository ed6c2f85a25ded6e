"""CCTP V2 protocol constants.

- Circle Iris attestation API endpoints
- CCTP domain ids
- Solana program ids and compute budgets

See `Circle CCTP supported chains <https://developers.circle.com/cctp/supported-domains>`__.
"""

#: Circle Iris attestation API, mainnet
IRIS_API_BASE_URL = "https://iris-api.circle.com"

#: Circle Iris attestation API, testnet chains
IRIS_API_SANDBOX_URL = "https://iris-api-sandbox.circle.com"

#: Iris rate limit is 35 requests per second, exceeding it gets a 5 minute block
IRIS_REQUESTS_PER_SECOND = 20

#: HTTP timeout for a single Iris API request, seconds
IRIS_REQUEST_TIMEOUT = 10.0

CCTP_DOMAIN_ETHEREUM = 0
CCTP_DOMAIN_AVALANCHE = 1
CCTP_DOMAIN_OPTIMISM = 2
CCTP_DOMAIN_ARBITRUM = 3
CCTP_DOMAIN_SOLANA = 5
CCTP_DOMAIN_BASE = 6
CCTP_DOMAIN_POLYGON = 7
CCTP_DOMAIN_UNICHAIN = 10
CCTP_DOMAIN_LINEA = 11
CCTP_DOMAIN_CODEX = 12
CCTP_DOMAIN_SONIC = 13
CCTP_DOMAIN_WORLDCHAIN = 14
CCTP_DOMAIN_SEI = 16

#: Human readable names for log output
CCTP_DOMAIN_NAMES: dict[int, str] = {
    CCTP_DOMAIN_ETHEREUM: "Ethereum",
    CCTP_DOMAIN_AVALANCHE: "Avalanche",
    CCTP_DOMAIN_OPTIMISM: "Optimism",
    CCTP_DOMAIN_ARBITRUM: "Arbitrum",
    CCTP_DOMAIN_SOLANA: "Solana",
    CCTP_DOMAIN_BASE: "Base",
    CCTP_DOMAIN_POLYGON: "Polygon",
    CCTP_DOMAIN_UNICHAIN: "Unichain",
    CCTP_DOMAIN_LINEA: "Linea",
    CCTP_DOMAIN_CODEX: "Codex",
    CCTP_DOMAIN_SONIC: "Sonic",
    CCTP_DOMAIN_WORLDCHAIN: "World Chain",
    CCTP_DOMAIN_SEI: "Sei",
}

#: ``minFinalityThreshold`` for Fast Transfer (soft finality)
FINALITY_THRESHOLD_FAST = 1000

#: ``minFinalityThreshold`` for Standard Transfer (hard finality)
FINALITY_THRESHOLD_STANDARD = 2000

#: USDC has 6 decimals on every CCTP chain
USDC_DECIMALS = 6

#: CCTP V2 TokenMessengerV2, same CREATE2 address on all EVM testnets
EVM_TESTNET_TOKEN_MESSENGER = "0x8FE6B999Dc680CcFDD5Bf7EB0974218be2542DAA"

#: CCTP V2 MessageTransmitterV2, same CREATE2 address on all EVM testnets
EVM_TESTNET_MESSAGE_TRANSMITTER = "0xE737e5cEBEEBa77EFE34D4aa090756590b1CE275"

#: Solana CCTP V2 MessageTransmitter program
SOLANA_MESSAGE_TRANSMITTER_PROGRAM_ID = "CCTPV2Sm4AdWt5296sk4P66VBZ7bEhcARwFaaS9YPbeC"

#: Solana CCTP V2 TokenMessengerMinter program
SOLANA_TOKEN_MESSENGER_MINTER_PROGRAM_ID = "CCTPV2vPZJS2u2BBsUoscuikbYjnpFmbFsvVuJdgUMQe"

#: Circle USDC mint on Solana devnet
SOLANA_DEVNET_USDC_MINT = "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU"

#: Anchor instruction namespace used by the CCTP programs
ANCHOR_GLOBAL_NAMESPACE = "global"

#: Space allocated for the ``MessageSent`` event account
MESSAGE_SENT_EVENT_ACCOUNT_SPACE = 1000

#: Compute units for ``deposit_for_burn`` (CPI into MessageTransmitter)
BURN_COMPUTE_UNIT_LIMIT = 300_000

#: Compute units for ``receive_message`` (CPI into TokenMessengerMinter and SPL Token)
RECEIVE_COMPUTE_UNIT_LIMIT = 400_000

#: Priority fee in micro-lamports per compute unit
COMPUTE_UNIT_PRICE_MICRO_LAMPORTS = 10
