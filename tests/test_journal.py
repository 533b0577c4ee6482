import pytest

from wallet_sweeper.journal import (
    STATUS_CONFIRMED,
    STATUS_SETTLED,
    STATUS_SUBMITTED,
    SubmissionJournal,
    SubmissionRecord,
)

ACCOUNT = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


@pytest.fixture
def journal():
    journal = SubmissionJournal(':memory:')
    yield journal
    journal.close()


def record(nonce, tx_hash, chain_id=1, amount=10 ** 15, asset='ETH'):
    return SubmissionRecord(
        account=ACCOUNT,
        chain_id=chain_id,
        nonce=nonce,
        tx_hash=tx_hash,
        asset=asset,
        amount=amount,
    )


def test_record_and_fetch(journal):
    assert journal.record_submission(record(0, '0xaa', amount=2 ** 255))

    stored = journal.get_submission('0xaa')
    assert stored['status'] == STATUS_SUBMITTED
    assert stored['amount'] == 2 ** 255
    assert journal.get_submission('0xbb') is None


def test_duplicate_hash_is_refused(journal):
    assert journal.record_submission(record(0, '0xaa'))
    assert not journal.record_submission(record(1, '0xaa'))
    assert len(journal.get_recent()) == 1


def test_reserved_nonce_ignores_resolved_and_other_chains(journal):
    journal.record_submission(record(3, '0x03'))
    journal.record_submission(record(4, '0x04'))
    journal.record_submission(record(2, '0x02', chain_id=56))

    assert journal.reserved_nonce(ACCOUNT, 1, 'ETH', 0) == 3
    assert journal.resolve('0x03', STATUS_CONFIRMED)
    assert journal.reserved_nonce(ACCOUNT, 1, 'ETH', 0) == 4
    assert journal.reserved_nonce(ACCOUNT, 1, 'ETH', 5) is None
    assert journal.reserved_nonce(ACCOUNT, 56, 'ETH', 0) == 2


def test_reserved_nonce_is_per_asset(journal):
    journal.record_submission(record(0, '0x00', asset='USDT', amount=50 * 10 ** 6))

    assert journal.reserved_nonce(ACCOUNT, 1, 'USDT', 0) == 0
    assert journal.reserved_nonce(ACCOUNT, 1, 'ETH', 0) is None


def test_settle_below_mined_nonce(journal):
    journal.record_submission(record(0, '0x00'))
    journal.record_submission(record(1, '0x01'))
    journal.record_submission(record(2, '0x02'))

    assert journal.settle_below(ACCOUNT, 1, 2) == 2
    assert journal.get_submission('0x00')['status'] == STATUS_SETTLED
    assert journal.get_submission('0x02')['status'] == STATUS_SUBMITTED
    assert journal.reserved_nonce(ACCOUNT, 1, 'ETH', 2) == 2


def test_recent_is_newest_first(journal):
    for nonce in range(3):
        journal.record_submission(record(nonce, f'0x{nonce:02x}'))
    assert [r['nonce'] for r in journal.get_recent(limit=2)] == [2, 1]


def test_record_to_dict():
    data = record(0, '0xaa').to_dict()
    assert data['status'] == STATUS_SUBMITTED
    assert isinstance(data['created_at'], str)


def test_file_journal_persists(tmp_path):
    path = tmp_path / 'nested' / 'journal.db'
    journal = SubmissionJournal(str(path))
    journal.record_submission(record(0, '0xaa'))
    journal.close()

    reopened = SubmissionJournal(str(path))
    assert reopened.reserved_nonce(ACCOUNT, 1, 'ETH', 0) == 0
    reopened.close()
