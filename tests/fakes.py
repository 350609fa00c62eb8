"""
In-memory chain used by the tests.

FakeChain implements the ChainClient interface over a tiny simulated
world holding the account factory, the meta factory, the token, the escrow
vaults, the attestation verifier module and Multicall3. Every state change
runs against a snapshot and is rolled back on revert, so atomicity of the
bundle is observable without a node.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.packed import encode_packed
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak, to_checksum_address

from bondflow.chain import abi
from bondflow.chain.base import CallReverted, ChainClient, TxReceipt
from bondflow.core.addresses import ContractAddresses
from bondflow.protocol.models import BPS_DENOMINATOR
from bondflow.signing.keys import LocalKeyCustody


class Revert(Exception):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason
        self.data = abi.ERROR_STRING_SELECTOR + abi_encode(["string"], [reason])


def _addr(value) -> str:
    return to_checksum_address(value)


@dataclass
class WorldState:
    code: Dict[str, bytes] = field(default_factory=dict)
    balances: Dict[str, int] = field(default_factory=dict)
    allowances: Dict[Tuple[str, str], int] = field(default_factory=dict)
    deposits: Dict[str, Dict[str, int]] = field(default_factory=dict)
    used_nonces: Set[Tuple[str, str, int]] = field(default_factory=set)
    allowance_caps: Dict[str, int] = field(default_factory=dict)
    initialized: Set[str] = field(default_factory=set)


class FakeChain(ChainClient):
    """
    Deterministic single-node chain.

    Knobs:
        stale_balance_reads   balanceOf returns 0 this many times before the real value
        authorizer            address the verifier accepts attestations from
    """

    def __init__(
        self,
        addresses: ContractAddresses,
        *,
        custody: Optional[LocalKeyCustody] = None,
        authorizer: Optional[str] = None,
        chain_id: int = 84532,
    ) -> None:
        self.addresses = addresses
        self.custody = custody or LocalKeyCustody.generate()
        self.authorizer = _addr(authorizer or self.custody.address)
        self._chain_id = chain_id
        self.state = WorldState()
        self.block_number = 1000
        self.stale_balance_reads = 0
        self.sent: List[Tuple[str, str]] = []
        self.calls: List[Tuple[str, str]] = []
        self._receipts: Dict[str, TxReceipt] = {}
        self._vaults = {_addr(v) for _, v in addresses.vaults}
        for name, address in addresses.core_contracts().items():
            self.state.code[_addr(address)] = b"\x60\x80" + name.encode()
        for vault in self._vaults:
            self.state.code[vault] = b"\x60\x80vault"
            self.state.deposits[vault] = {}

    # ------------------------------------------------------------------
    # ChainClient
    # ------------------------------------------------------------------
    @property
    def sender(self) -> str:
        return self.custody.address

    async def chain_id(self) -> int:
        return self._chain_id

    async def get_code(self, address: str) -> bytes:
        return self.state.code.get(_addr(address), b"")

    async def call(self, to: str, data: bytes) -> bytes:
        self.calls.append((_addr(to), self._name(data)))
        snapshot = copy.deepcopy(self.state)
        try:
            return self._execute(self.sender, _addr(to), data)
        except Revert as e:
            raise CallReverted(data=e.data) from None
        finally:
            self.state = snapshot

    async def send_transaction(self, to: str, data: bytes, *, gas: Optional[int] = None) -> str:
        self.block_number += 1
        tx_hash = "0x" + keccak(data + self.block_number.to_bytes(32, "big")).hex()
        self.sent.append((_addr(to), self._name(data)))

        snapshot = copy.deepcopy(self.state)
        status = 1
        try:
            self._execute(self.sender, _addr(to), data)
        except Revert:
            self.state = snapshot
            status = 0

        self._receipts[tx_hash] = TxReceipt(
            tx_hash=tx_hash,
            status=status,
            block_number=self.block_number,
            block_hash="0x" + keccak(self.block_number.to_bytes(32, "big")).hex(),
            gas_used=21_000 + 16 * len(data),
        )
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str, *, confirmations: int = 1) -> TxReceipt:
        self.block_number += max(0, confirmations - 1)
        return self._receipts[tx_hash]

    # ------------------------------------------------------------------
    # Helpers for assertions
    # ------------------------------------------------------------------
    def balance(self, holder: str) -> int:
        return self.state.balances.get(_addr(holder), 0)

    def deposited(self, vault: str, account: str) -> int:
        return self.state.deposits.get(_addr(vault), {}).get(_addr(account), 0)

    def sent_names(self) -> List[str]:
        return [name for _, name in self.sent]

    def expected_address(self, init_payload: bytes, salt: bytes) -> str:
        factory = bytes.fromhex(self.addresses.account_factory[2:])
        return _addr(keccak(b"\xff" + factory + salt + keccak(init_payload))[12:])

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------
    _FUNCTIONS = (
        abi.COMPUTE_ACCOUNT_ADDRESS,
        abi.CREATE_ACCOUNT,
        abi.DEPLOY_WITH_FACTORY,
        abi.EXECUTE_BATCH_WITH_ATTESTATION,
        abi.IS_INITIALIZED,
        abi.IS_AGENT_MODE_ACTIVATED,
        abi.MINT,
        abi.BALANCE_OF,
        abi.APPROVE,
        abi.DEPOSIT,
        abi.AGGREGATE3,
    )

    def _function(self, data: bytes):
        for fn in self._FUNCTIONS:
            if data[:4] == fn.selector:
                return fn
        raise Revert("unknown selector 0x" + data[:4].hex())

    def _name(self, data: bytes) -> str:
        try:
            return self._function(data).name
        except Revert:
            return "0x" + data[:4].hex()

    def _execute(self, sender: str, to: str, data: bytes) -> bytes:
        a = self.addresses
        fn = self._function(data)
        args = fn.decode_input(data)

        if to == a.multicall3 and fn is abi.AGGREGATE3:
            return self._aggregate3(args[0])
        if to == a.account_factory and fn is abi.COMPUTE_ACCOUNT_ADDRESS:
            return abi_encode(["address"], [self.expected_address(*args)])
        if to == a.account_factory and fn is abi.CREATE_ACCOUNT:
            return abi_encode(["address"], [self._create_account(*args)])
        if to == a.meta_factory and fn is abi.DEPLOY_WITH_FACTORY:
            factory, create_call = args
            if _addr(factory) != a.account_factory:
                raise Revert("FactoryNotWhitelisted")
            return self._execute(to, a.account_factory, create_call)
        if to == a.bond_module and fn is abi.EXECUTE_BATCH_WITH_ATTESTATION:
            self._execute_batch(*args)
            return b""
        if to == a.bond_module and fn in (abi.IS_INITIALIZED, abi.IS_AGENT_MODE_ACTIVATED):
            return abi_encode(["bool"], [_addr(args[0]) in self.state.initialized])
        if to == a.token and fn is abi.MINT:
            holder = _addr(args[0])
            self.state.balances[holder] = self.state.balances.get(holder, 0) + args[1]
            return b""
        if to == a.token and fn is abi.BALANCE_OF:
            if self.stale_balance_reads > 0:
                self.stale_balance_reads -= 1
                return abi_encode(["uint256"], [0])
            return abi_encode(["uint256"], [self.balance(args[0])])
        if to == a.token and fn is abi.APPROVE:
            self.state.allowances[(sender, _addr(args[0]))] = args[1]
            return abi_encode(["bool"], [True])
        if to in self._vaults and fn is abi.DEPOSIT:
            self._deposit(sender, to, args[0])
            return b""
        raise Revert(f"{fn.name} not supported on {to}")

    # ------------------------------------------------------------------
    # Contracts
    # ------------------------------------------------------------------
    def _aggregate3(self, calls) -> bytes:
        results = []
        for target, allow_failure, call_data in calls:
            snapshot = copy.deepcopy(self.state)
            try:
                results.append((True, self._execute(self.addresses.multicall3, _addr(target), call_data)))
            except Revert as e:
                self.state = snapshot
                if not allow_failure:
                    raise Revert("Multicall3: call failed") from None
                results.append((False, e.data))
        return abi_encode(["(bool,bytes)[]"], [results])

    def _create_account(self, init_payload: bytes, salt: bytes) -> str:
        account = self.expected_address(init_payload, salt)
        if account in self.state.code:
            return account

        bootstrap, init_call = abi_decode(["address", "bytes"], init_payload)
        if _addr(bootstrap) != self.addresses.bootstrap:
            raise Revert("InvalidBootstrap")
        _, _, executors, _, _, _, _ = abi.INIT_NEXUS.decode_input(init_call)
        for module, install_data in executors:
            if _addr(module) == self.addresses.bond_module:
                tokens, caps = abi_decode(["address[]", "uint256[]"], install_data)
                self.state.allowance_caps[account] = dict(zip(map(_addr, tokens), caps)).get(
                    self.addresses.token, 0
                )
                self.state.initialized.add(account)

        self.state.code[account] = b"\x60\x80nexus"
        return account

    def _execute_batch(self, account, batch_bytes, token, cap_bps, nonce, signature) -> None:
        account, token = _addr(account), _addr(token)
        if account not in self.state.initialized:
            raise Revert("ModuleNotInitialized")
        if (account, token, nonce) in self.state.used_nonces:
            raise Revert("Nonce already used")
        if cap_bps > BPS_DENOMINATOR:
            raise Revert("Invalid percentage")

        digest = keccak(encode_packed(
            ["uint256", "address", "address", "uint256", "uint256", "bytes"],
            [self._chain_id, account, token, cap_bps, nonce, batch_bytes],
        ))
        signer = Account.recover_message(encode_defunct(primitive=digest), signature=signature)
        if _addr(signer) != self.authorizer:
            raise Revert("Invalid attestation signature")

        calls = abi.decode_batch(batch_bytes)
        total = sum(
            abi.DEPOSIT.decode_input(bytes(data))[0]
            for _, _, data in calls
            if bytes(data)[:4] == abi.DEPOSIT.selector
        )
        if total * BPS_DENOMINATOR > self.balance(account) * cap_bps:
            raise Revert("Exceeds allowed percentage")
        if total > self.state.allowance_caps.get(account, 0):
            raise Revert("Allowance cap exceeded")

        self.state.used_nonces.add((account, token, nonce))
        for target, _value, data in calls:
            self._execute(account, _addr(target), bytes(data))

    def _deposit(self, depositor: str, vault: str, amount: int) -> None:
        allowance = self.state.allowances.get((depositor, vault), 0)
        if allowance < amount:
            raise Revert("ERC20: insufficient allowance")
        if self.balance(depositor) < amount:
            raise Revert("ERC20: transfer amount exceeds balance")
        self.state.allowances[(depositor, vault)] = allowance - amount
        self.state.balances[depositor] -= amount
        self.state.balances[vault] = self.balance(vault) + amount
        per_vault = self.state.deposits.setdefault(vault, {})
        per_vault[depositor] = per_vault.get(depositor, 0) + amount
