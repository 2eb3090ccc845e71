"""Circle Cross-Chain Transfer Protocol V2 integration.

Burn USDC on a source chain, wait for Circle's Iris attestation service
to sign the burn and mint the same amount on the destination chain.

- :py:mod:`bridgepay.cctp.amount`: human decimals to raw 6-decimal units
- :py:mod:`bridgepay.cctp.attestation`: Iris API polling
- :py:mod:`bridgepay.cctp.orchestrator`: the transfer state machine
"""
