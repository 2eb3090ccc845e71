"""Cross-chain USDC bill payments over Circle CCTP V2.

- :py:mod:`bridgepay.cctp` moves USDC between chains (approve, burn, attest, mint)
- :py:mod:`bridgepay.billing` tracks bills and their payment instructions
"""
