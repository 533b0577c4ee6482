import asyncio

import pytest
from web3.exceptions import TimeExhausted

from wallet_sweeper.exceptions import ConfigurationError, ContractError, InsufficientAfterFeeError
from wallet_sweeper.journal import STATUS_CONFIRMED, STATUS_REVERTED, STATUS_SUBMITTED, SubmissionJournal
from wallet_sweeper.transfer_executor import TransferExecutor

from conftest import DESTINATION, GWEI, USDT_ADDRESS, fake_cache, spy_account


@pytest.fixture
def account():
    return spy_account()


@pytest.fixture
def journal():
    journal = SubmissionJournal(':memory:')
    yield journal
    journal.close()


def make_executor(chain, fake_w3, journal=None, **kwargs):
    return TransferExecutor(fake_cache({chain.chain_id: fake_w3}), DESTINATION, journal=journal, **kwargs)


def test_rejects_invalid_destination(chain, fake_w3):
    with pytest.raises(ConfigurationError):
        TransferExecutor(fake_cache({1: fake_w3}), "0xnot-an-address")


def test_destination_is_checksummed(chain, fake_w3):
    executor = TransferExecutor(fake_cache({1: fake_w3}), DESTINATION.lower())
    assert executor.destination == DESTINATION


def test_native_transfer_fields(chain, fake_w3, fake_eth, account):
    fake_eth.pending_nonce = 7
    executor = make_executor(chain, fake_w3)

    outcome = asyncio.run(executor.send_native(account, chain, 1_998_950_000_000_000, gas_price=50 * GWEI))

    assert outcome.success and outcome.confirmed
    assert outcome.tx_hash.startswith('0x') and len(outcome.tx_hash) == 66
    assert outcome.asset == 'ETH'
    assert len(fake_eth.sent) == 1

    tx = account.signer.signed[0]
    assert tx['to'] == DESTINATION
    assert tx['value'] == 1_998_950_000_000_000
    assert tx['gas'] == 21000
    assert tx['gasPrice'] == 50 * GWEI
    assert tx['nonce'] == 7
    assert tx['chainId'] == 1


def test_native_quotes_gas_when_not_given(chain, fake_w3, fake_eth, account):
    fake_eth._gas_price = 0
    executor = make_executor(chain, fake_w3)

    asyncio.run(executor.send_native(account, chain, 10 ** 15))

    assert account.signer.signed[0]['gasPrice'] == 1


def test_non_positive_amount_is_refused(chain, fake_w3, fake_eth, account):
    executor = make_executor(chain, fake_w3)

    with pytest.raises(InsufficientAfterFeeError):
        asyncio.run(executor.send_native(account, chain, 0))
    with pytest.raises(InsufficientAfterFeeError):
        asyncio.run(executor.send_token(account, chain, 'USDT', 0))
    assert fake_eth.sent == []


def test_token_transfer_calls_contract(chain, fake_w3, fake_eth, account):
    executor = make_executor(chain, fake_w3)

    outcome = asyncio.run(executor.send_token(account, chain, 'USDT', 40 * 10 ** 6))

    assert outcome.success and outcome.confirmed
    assert outcome.asset == 'USDT'
    assert fake_eth.built == [{'to': DESTINATION, 'amount': 40 * 10 ** 6, 'token': USDT_ADDRESS}]
    tx = account.signer.signed[0]
    assert tx['to'] == USDT_ADDRESS
    assert tx['value'] == 0
    assert 'from' not in tx


def test_unregistered_token(chain, fake_w3, account):
    executor = make_executor(chain, fake_w3)
    with pytest.raises(ContractError):
        asyncio.run(executor.send_token(account, chain, 'DAI', 10))


def test_rejected_send_has_no_hash(chain, fake_w3, fake_eth, account):
    fake_eth.send_error = ValueError("insufficient funds for gas * price + value")
    executor = make_executor(chain, fake_w3)

    outcome = asyncio.run(executor.send_native(account, chain, 10 ** 15, gas_price=GWEI))

    assert not outcome.success
    assert not outcome.submitted
    assert "insufficient funds" in outcome.reason


def test_gas_price_failure_is_rejected_outcome(chain, fake_w3, fake_eth, account):
    fake_eth.gas_price_error = ConnectionError("down")
    executor = make_executor(chain, fake_w3)

    outcome = asyncio.run(executor.send_token(account, chain, 'USDC', 50 * 10 ** 6))

    assert not outcome.submitted
    assert "NetworkError" in outcome.reason


def test_reverted_transaction(chain, fake_w3, fake_eth, account, journal):
    fake_eth.receipt_status = 0
    executor = make_executor(chain, fake_w3, journal=journal)

    outcome = asyncio.run(executor.send_token(account, chain, 'USDT', 50 * 10 ** 6))

    assert outcome.submitted
    assert not outcome.success
    assert outcome.reason == 'transaction reverted'
    assert journal.get_submission(outcome.tx_hash)['status'] == STATUS_REVERTED


def test_confirmation_timeout_keeps_submission(chain, fake_w3, fake_eth, account, journal):
    fake_eth.receipt_error = TimeExhausted("not mined")
    executor = make_executor(chain, fake_w3, journal=journal, confirmation_timeout=5)

    outcome = asyncio.run(executor.send_native(account, chain, 10 ** 15, gas_price=GWEI))

    assert outcome.success
    assert outcome.submitted
    assert not outcome.confirmed
    assert "5s" in outcome.reason
    record = journal.get_submission(outcome.tx_hash)
    assert record['status'] == STATUS_SUBMITTED
    assert record['amount'] == 10 ** 15


def test_unresolved_submission_nonce_is_reused(chain, fake_w3, fake_eth, account, journal):
    fake_eth.receipt_error = TimeExhausted("not mined")
    executor = make_executor(chain, fake_w3, journal=journal)

    first = asyncio.run(executor.send_native(account, chain, 10 ** 15, gas_price=GWEI))
    fake_eth.receipt_error = None
    second = asyncio.run(executor.send_native(account, chain, 10 ** 15 - 1, gas_price=2 * GWEI))

    assert fake_eth.pending_nonce == 2
    assert [tx['nonce'] for tx in account.signer.signed] == [0, 0]
    assert journal.get_submission(first.tx_hash)['status'] == STATUS_SUBMITTED
    assert journal.get_submission(second.tx_hash)['status'] == STATUS_CONFIRMED


def test_unresolved_token_nonce_is_not_taken_by_native(chain, fake_w3, fake_eth, account, journal):
    fake_eth.receipt_error = TimeExhausted("not mined")
    executor = make_executor(chain, fake_w3, journal=journal)

    token = asyncio.run(executor.send_token(account, chain, 'USDT', 50 * 10 ** 6))
    native = asyncio.run(executor.send_native(account, chain, 10 ** 17, gas_price=GWEI))

    assert [tx['nonce'] for tx in account.signer.signed] == [0, 1]
    assert journal.get_submission(token.tx_hash)['status'] == STATUS_SUBMITTED
    assert journal.get_submission(native.tx_hash)['nonce'] == 1


def test_mined_nonce_settles_old_entries(chain, fake_w3, fake_eth, account, journal):
    fake_eth.receipt_error = TimeExhausted("not mined")
    executor = make_executor(chain, fake_w3, journal=journal)

    first = asyncio.run(executor.send_native(account, chain, 10 ** 15, gas_price=GWEI))
    fake_eth.mined_nonce = fake_eth.pending_nonce = 1
    fake_eth.receipt_error = None
    asyncio.run(executor.send_native(account, chain, 10 ** 15, gas_price=GWEI))

    assert [tx['nonce'] for tx in account.signer.signed] == [0, 1]
    assert journal.get_submission(first.tx_hash)['status'] == 'settled'


def test_outcome_to_dict(chain, fake_w3, account):
    executor = make_executor(chain, fake_w3)
    outcome = asyncio.run(executor.send_native(account, chain, 2 ** 200, gas_price=GWEI))

    data = outcome.to_dict()
    assert data['amount'] == str(2 ** 200)
    assert data['chain_name'] == 'ethereum'
    assert 'T' in data['completed_at']
