"""
Tests for the atomic deploy + distribute executor.

Test coverage:
1. Happy path: deployment and distribution in one transaction
2. Rollback: no code and no transfers when the attested call fails
3. Verifier rejections: replayed nonce, cap excess, wrong signer
4. Already-deployed accounts short-circuit with no calls
5. Revert reason classification
"""

import asyncio

import pytest
from eth_utils import to_checksum_address

from bondflow.chain import abi
from bondflow.chain.multicall import Call3, Multicall3Submitter
from bondflow.core.batch import BatchBuilder
from bondflow.core.executor import AtomicExecutor, classify_revert
from bondflow.core.precompute import build_init_payload, derive_salt
from bondflow.protocol.enums import DeploymentStatus, Step
from bondflow.protocol.errors import (
    AtomicExecutionFailure,
    CapExceededError,
    ReplayError,
    ValidationError,
)
from bondflow.signing.attestation import sign_attestation
from bondflow.signing.keys import LocalKeyCustody

BALANCE = 10_000_000_000


class Setup:
    """A funded, undeployed account with a batch ready to sign."""

    def __init__(self, chain, addresses, custody, plan, label="executor-test"):
        self.chain = chain
        self.addresses = addresses
        self.custody = custody
        self.init_payload = build_init_payload(addresses, custody.address, allowance_cap=BALANCE)
        self.salt = derive_salt(label)
        self.account = chain.expected_address(self.init_payload, self.salt)
        chain.state.balances[self.account] = BALANCE
        self.batch = BatchBuilder(addresses.token).build(BALANCE, plan)

    def attest(self, nonce=1, cap_bps=10_000, key=None, batch=None, account=None):
        return sign_attestation(
            84532,
            account or self.account,
            self.addresses.token,
            cap_bps,
            nonce,
            batch or self.batch,
            key or self.custody,
        )


def _executor(chain, addresses, *, preflight=True, ledger=None):
    submitter = Multicall3Submitter(chain, addresses.multicall3)
    return AtomicExecutor(chain, submitter, addresses, ledger=ledger, preflight=preflight)


@pytest.fixture
def setup(chain, addresses, custody, plan):
    return Setup(chain, addresses, custody, plan)


# ===========================================================================
# 1. Happy path
# ===========================================================================


class TestAtomicExecution:
    def test_deploys_and_distributes(self, chain, addresses, setup):
        executor = _executor(chain, addresses)
        record = asyncio.run(executor.execute(
            setup.account, setup.init_payload, setup.salt, setup.attest(), setup.batch
        ))

        assert record.status == DeploymentStatus.DEPLOYED
        assert record.account == setup.account
        assert record.nonce == 1
        assert record.tx_hash.startswith("0x")
        assert record.distribution == {
            "zyfai": 3_000_000_000,
            "giza": 3_000_000_000,
            "cod3x": 4_000_000_000,
        }

        assert asyncio.run(chain.has_code(setup.account))
        assert chain.deposited(addresses.vault("zyfai"), setup.account) == 3_000_000_000
        assert chain.deposited(addresses.vault("giza"), setup.account) == 3_000_000_000
        assert chain.deposited(addresses.vault("cod3x"), setup.account) == 4_000_000_000
        assert chain.balance(setup.account) == 0

    def test_single_transaction(self, chain, addresses, setup):
        executor = _executor(chain, addresses)
        asyncio.run(executor.execute(
            setup.account, setup.init_payload, setup.salt, setup.attest(), setup.batch
        ))
        assert chain.sent_names() == ["aggregate3"]

    def test_address_matches_deployed_code(self, chain, addresses, setup):
        executor = _executor(chain, addresses, preflight=False)
        assert not asyncio.run(chain.has_code(setup.account))
        asyncio.run(executor.execute(
            setup.account, setup.init_payload, setup.salt, setup.attest(), setup.batch
        ))
        assert asyncio.run(chain.has_code(setup.account))

    def test_build_calls_shape(self, addresses, setup, chain):
        calls = _executor(chain, addresses).build_calls(
            setup.account, setup.init_payload, setup.salt, setup.attest(), setup.batch
        )
        assert [c.target for c in calls] == [addresses.meta_factory, addresses.bond_module]
        assert all(isinstance(c, Call3) and not c.allow_failure for c in calls)

        factory, create_call = abi.DEPLOY_WITH_FACTORY.decode_input(calls[0].data)
        assert to_checksum_address(factory) == addresses.account_factory
        assert abi.CREATE_ACCOUNT.decode_input(create_call) == (setup.init_payload, setup.salt)

        account, batch_bytes, token, cap, nonce, _sig = abi.EXECUTE_BATCH_WITH_ATTESTATION.decode_input(
            calls[1].data
        )
        assert to_checksum_address(account) == setup.account
        assert batch_bytes == setup.batch.encode()
        assert (to_checksum_address(token), cap, nonce) == (addresses.token, 10_000, 1)


# ===========================================================================
# 2. Rollback
# ===========================================================================


class TestRollback:
    def test_failed_attestation_leaves_no_code(self, chain, addresses, setup):
        stranger = LocalKeyCustody.generate()
        executor = _executor(chain, addresses, preflight=False)

        with pytest.raises(AtomicExecutionFailure):
            asyncio.run(executor.execute(
                setup.account, setup.init_payload, setup.salt, setup.attest(key=stranger), setup.batch
            ))

        assert not asyncio.run(chain.has_code(setup.account))
        assert chain.balance(setup.account) == BALANCE
        for _, vault in addresses.vaults:
            assert chain.deposited(vault, setup.account) == 0

    def test_preflight_catches_failure_before_sending(self, chain, addresses, setup):
        stranger = LocalKeyCustody.generate()
        executor = _executor(chain, addresses)

        with pytest.raises(AtomicExecutionFailure, match="Invalid attestation signature") as exc:
            asyncio.run(executor.execute(
                setup.account, setup.init_payload, setup.salt, setup.attest(key=stranger), setup.batch
            ))

        assert exc.value.step == Step.EXECUTE
        assert exc.value.account == setup.account
        assert exc.value.nonce == 1
        assert chain.sent == []


# ===========================================================================
# 3. Verifier rejections
# ===========================================================================


class TestVerifierRejections:
    def test_replayed_nonce(self, chain, addresses, setup):
        executor = _executor(chain, addresses)
        asyncio.run(executor.execute(
            setup.account, setup.init_payload, setup.salt, setup.attest(nonce=42), setup.batch
        ))

        # Refund the deployed account and present the same attestation again
        chain.state.balances[setup.account] = BALANCE
        calls = executor.build_calls(
            setup.account, setup.init_payload, setup.salt, setup.attest(nonce=42), setup.batch
        )
        results = asyncio.run(Multicall3Submitter(chain, addresses.multicall3).simulate(calls[1:]))
        assert not results[0].success
        assert abi.decode_revert(results[0].return_data) == "Nonce already used"

    def test_replay_classified_in_preflight(self, chain, addresses, setup):
        # Mark the nonce as used for the account before it is deployed
        chain.state.used_nonces.add((setup.account, addresses.token, 7))
        executor = _executor(chain, addresses)

        with pytest.raises(ReplayError) as exc:
            asyncio.run(executor.execute(
                setup.account, setup.init_payload, setup.salt, setup.attest(nonce=7), setup.batch
            ))
        assert exc.value.nonce == 7
        assert not asyncio.run(chain.has_code(setup.account))

    def test_replay_without_preflight_is_atomic_failure(self, chain, addresses, setup):
        chain.state.used_nonces.add((setup.account, addresses.token, 7))
        executor = _executor(chain, addresses, preflight=False)

        with pytest.raises(AtomicExecutionFailure):
            asyncio.run(executor.execute(
                setup.account, setup.init_payload, setup.salt, setup.attest(nonce=7), setup.batch
            ))
        assert not asyncio.run(chain.has_code(setup.account))
        assert chain.sent_names() == ["aggregate3"]

    def test_cap_excess(self, chain, addresses, setup):
        executor = _executor(chain, addresses)

        with pytest.raises(CapExceededError):
            asyncio.run(executor.execute(
                setup.account, setup.init_payload, setup.salt, setup.attest(cap_bps=5_000), setup.batch
            ))
        assert not asyncio.run(chain.has_code(setup.account))
        assert chain.balance(setup.account) == BALANCE

    def test_cap_errors_are_atomic_failures(self):
        assert issubclass(CapExceededError, AtomicExecutionFailure)
        assert issubclass(ReplayError, AtomicExecutionFailure)


# ===========================================================================
# 4. Already deployed / input checks
# ===========================================================================


class TestAlreadyDeployed:
    def test_short_circuits_without_calls(self, chain, addresses, setup):
        chain.state.code[setup.account] = b"\x60\x80"
        executor = _executor(chain, addresses)

        record = asyncio.run(executor.execute(
            setup.account, setup.init_payload, setup.salt, setup.attest(), setup.batch
        ))

        assert record.status == DeploymentStatus.ALREADY_DEPLOYED
        assert chain.sent == []
        assert chain.balance(setup.account) == BALANCE

    def test_returns_ledger_record(self, chain, addresses, setup, ledger):
        executor = _executor(chain, addresses, ledger=ledger)
        first = asyncio.run(executor.execute(
            setup.account, setup.init_payload, setup.salt, setup.attest(nonce=1), setup.batch
        ))
        ledger.upsert(first)

        again = asyncio.run(executor.execute(
            setup.account, setup.init_payload, setup.salt, setup.attest(nonce=2), setup.batch
        ))
        assert again.status == DeploymentStatus.ALREADY_DEPLOYED
        assert again.tx_hash == first.tx_hash
        assert again.distribution == first.distribution
        assert chain.sent_names() == ["aggregate3"]


class TestInputChecks:
    def test_attestation_for_other_account(self, chain, addresses, setup):
        att = setup.attest(account="0x2222222222222222222222222222222222222222")
        with pytest.raises(ValidationError):
            asyncio.run(_executor(chain, addresses).execute(
                setup.account, setup.init_payload, setup.salt, att, setup.batch
            ))

    def test_attestation_for_other_batch(self, chain, addresses, setup, plan):
        other = BatchBuilder(addresses.token).build(BALANCE - 1, plan)
        with pytest.raises(ValidationError):
            asyncio.run(_executor(chain, addresses).execute(
                setup.account, setup.init_payload, setup.salt, setup.attest(batch=other), setup.batch
            ))
        assert chain.sent == []


# ===========================================================================
# 5. Classification
# ===========================================================================


class TestClassifyRevert:
    @pytest.mark.parametrize("reason", ["Nonce already used", "NonceAlreadyUsed()", "InvalidNonce()", "replay"])
    def test_replay(self, reason):
        assert classify_revert(reason) is ReplayError

    @pytest.mark.parametrize(
        "reason",
        ["Exceeds allowed percentage", "ExceedsAllowedPercentage()", "AllowanceCapExceeded()", "Invalid percentage"],
    )
    def test_cap(self, reason):
        assert classify_revert(reason) is CapExceededError

    @pytest.mark.parametrize("reason", ["Invalid attestation signature", "Multicall3: call failed", ""])
    def test_other(self, reason):
        assert classify_revert(reason) is AtomicExecutionFailure
