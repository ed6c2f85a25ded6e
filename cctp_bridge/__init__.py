"""Cross-chain USDC transfers with Circle CCTP V2."""
