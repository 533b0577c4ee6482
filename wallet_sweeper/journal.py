"""
Submission Journal

SQLite record of every transaction the executor got accepted by a node.
Entries are keyed by (account, chain_id, nonce) so a retry after an ambiguous
failure can reuse the nonce of the unresolved submission instead of sending a
second transfer.

Statuses:
- submitted: accepted by the node, receipt not seen yet
- confirmed: receipt with status 1
- reverted: receipt with status 0
- settled: the account's mined nonce moved past it without us seeing a receipt
"""

import sqlite3
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger

STATUS_SUBMITTED = 'submitted'
STATUS_CONFIRMED = 'confirmed'
STATUS_REVERTED = 'reverted'
STATUS_SETTLED = 'settled'


@dataclass
class SubmissionRecord:
    """One accepted transaction"""
    account: str
    chain_id: int
    nonce: int
    tx_hash: str
    asset: str
    amount: int
    status: str = STATUS_SUBMITTED
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = datetime.now(timezone.utc)

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['created_at'] = self.created_at.isoformat()
        return data


class SubmissionJournal:
    """
    SQLite journal of submitted sweep transactions

    Features:
    - Submission logging keyed by account/chain/nonce
    - Receipt resolution
    - Unresolved nonce lookup for the duplicate-send guard
    """

    def __init__(self, db_path: str = "sweep_journal.db"):
        """
        Initialize journal

        Args:
            db_path: Path to SQLite database (":memory:" for a throwaway journal)
        """
        self.db_path = db_path
        if db_path != ':memory:':
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn: Optional[sqlite3.Connection] = sqlite3.connect(db_path)
        self.conn.row_factory = sqlite3.Row
        self._create_tables()
        logger.info(f"Submission journal initialized: {db_path}")

    def _create_tables(self):
        cursor = self.conn.cursor()

        # amounts are uint256, so they are stored as TEXT
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS submissions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                account TEXT NOT NULL,
                chain_id INTEGER NOT NULL,
                nonce INTEGER NOT NULL,
                tx_hash TEXT UNIQUE NOT NULL,
                asset TEXT NOT NULL,
                amount TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'submitted',
                created_at TIMESTAMP NOT NULL,
                resolved_at TIMESTAMP,
                CONSTRAINT valid_status CHECK (status IN ('submitted', 'confirmed', 'reverted', 'settled')),
                CONSTRAINT non_negative_nonce CHECK (nonce >= 0)
            )
        """)

        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_submissions_account_chain ON submissions(account, chain_id, nonce)"
        )
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_submissions_status ON submissions(status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_submissions_asset ON submissions(account, chain_id, asset)")

        self.conn.commit()

    def record_submission(self, record: SubmissionRecord) -> bool:
        """
        Record an accepted submission

        Returns:
            Success status
        """
        try:
            self.conn.execute("""
                INSERT INTO submissions (
                    account, chain_id, nonce, tx_hash, asset, amount, status, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.account,
                record.chain_id,
                record.nonce,
                record.tx_hash,
                record.asset,
                str(record.amount),
                record.status,
                record.created_at.isoformat(),
            ))
            self.conn.commit()
            logger.debug(f"Journal: recorded {record.tx_hash} (nonce {record.nonce})")
            return True

        except sqlite3.IntegrityError:
            logger.error(f"✗ Journal: duplicate submission {record.tx_hash}")
            return False
        except sqlite3.Error as e:
            logger.error(f"✗ Journal: error recording submission: {e}")
            self.conn.rollback()
            return False

    def resolve(self, tx_hash: str, status: str) -> bool:
        """
        Mark a submission confirmed or reverted

        Returns:
            True if a row was updated
        """
        try:
            cursor = self.conn.execute("""
                UPDATE submissions
                SET status = ?, resolved_at = ?
                WHERE tx_hash = ?
            """, (status, datetime.now(timezone.utc).isoformat(), tx_hash))
            self.conn.commit()
            return cursor.rowcount > 0

        except sqlite3.Error as e:
            logger.error(f"✗ Journal: error resolving {tx_hash}: {e}")
            self.conn.rollback()
            return False

    def settle_below(self, account: str, chain_id: int, mined_nonce: int) -> int:
        """
        Settle unresolved entries whose nonce the chain has already consumed

        Args:
            account: Account address
            chain_id: Chain id
            mined_nonce: Account's current mined transaction count

        Returns:
            Number of entries settled
        """
        cursor = self.conn.execute("""
            UPDATE submissions
            SET status = ?, resolved_at = ?
            WHERE account = ? AND chain_id = ? AND status = ? AND nonce < ?
        """, (
            STATUS_SETTLED,
            datetime.now(timezone.utc).isoformat(),
            account,
            chain_id,
            STATUS_SUBMITTED,
            mined_nonce,
        ))
        self.conn.commit()
        return cursor.rowcount

    def reserved_nonce(self, account: str, chain_id: int, asset: str, min_nonce: int) -> Optional[int]:
        """
        Lowest unresolved nonce at or above min_nonce held by a transfer of the same asset

        Unresolved transfers of other assets keep their nonce; a new transfer
        of a different asset never replaces them.
        """
        row = self.conn.execute("""
            SELECT MIN(nonce) AS nonce FROM submissions
            WHERE account = ? AND chain_id = ? AND asset = ? AND status = ? AND nonce >= ?
        """, (account, chain_id, asset, STATUS_SUBMITTED, min_nonce)).fetchone()
        return row['nonce'] if row and row['nonce'] is not None else None

    def get_submission(self, tx_hash: str) -> Optional[Dict]:
        row = self.conn.execute("SELECT * FROM submissions WHERE tx_hash = ?", (tx_hash,)).fetchone()
        return _row_to_dict(row) if row else None

    def get_recent(self, limit: int = 50) -> List[Dict]:
        rows = self.conn.execute(
            "SELECT * FROM submissions ORDER BY id DESC LIMIT ?", (limit,)
        ).fetchall()
        return [_row_to_dict(row) for row in rows]

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.debug("Submission journal closed")


def _row_to_dict(row: sqlite3.Row) -> Dict:
    data = dict(row)
    data['amount'] = int(data['amount'])
    return data
