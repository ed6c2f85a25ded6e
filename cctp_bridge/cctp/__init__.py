"""Circle Cross-Chain Transfer Protocol V2 burn-attest-mint engine.

- EVM and Solana executors
- Iris attestation client
- Transfer records and their lifecycle
"""
