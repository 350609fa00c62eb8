from .base import CallReverted, ChainClient, TxReceipt
from .multicall import Call3, CallResult, Multicall3Submitter, MulticallSubmitter
from .web3_client import Web3ChainClient

__all__ = [
    "CallReverted",
    "ChainClient",
    "TxReceipt",
    "Call3",
    "CallResult",
    "Multicall3Submitter",
    "MulticallSubmitter",
    "Web3ChainClient",
]
