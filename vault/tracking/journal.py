"""
Operation Journal — persists every vault operation and adapter failure.

Deposits, withdrawals, reservations, harvests, rebalances and failed
adapter calls all land in one sqlite table. Amounts are stored as TEXT
so arbitrarily large integers survive the round trip exactly.
"""
import json
import logging
import sqlite3
from collections import Counter, deque
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Deque, List, Optional

logger = logging.getLogger("vault.journal")


class OperationJournal:

    MEMORY_SIZE = 5000

    def __init__(self, db_path: str = "data/vault.db"):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        self._recent: Deque[dict] = deque(maxlen=self.MEMORY_SIZE)
        self._counts: Counter = Counter()

    @contextmanager
    def _conn(self):
        conn = sqlite3.connect(self.db_path, timeout=10.0)
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _init_db(self):
        with self._conn() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS vault_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_type TEXT NOT NULL,
                    actor TEXT,
                    amount TEXT DEFAULT '0',
                    shares TEXT DEFAULT '0',
                    details_json TEXT,
                    timestamp TEXT
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_vault_events_type ON vault_events(event_type)")

    def record(self, event_type: str, actor: str, amount: int = 0, shares: int = 0,
               details: Optional[dict] = None) -> None:
        entry = {
            'event_type': event_type,
            'actor': actor,
            'amount': int(amount),
            'shares': int(shares),
            'details': details or {},
            'timestamp': datetime.utcnow().isoformat(),
        }
        self._recent.append(entry)
        self._counts[event_type] += 1
        try:
            with self._conn() as conn:
                conn.execute(
                    "INSERT INTO vault_events (event_type, actor, amount, shares, details_json, timestamp) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (event_type, actor, str(entry['amount']), str(entry['shares']),
                     json.dumps(entry['details'], default=str), entry['timestamp']),
                )
        except sqlite3.Error as e:
            # The in-memory copy is kept; a broken disk must not block vault operations
            logger.error(f"Failed to persist {event_type} event: {e}")

    def recent(self, limit: int = 50, event_type: Optional[str] = None) -> List[dict]:
        query = "SELECT event_type, actor, amount, shares, details_json, timestamp FROM vault_events"
        params: tuple = ()
        if event_type:
            query += " WHERE event_type = ?"
            params = (event_type,)
        query += " ORDER BY id DESC LIMIT ?"
        params += (limit,)
        with self._conn() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            {
                'event_type': r[0],
                'actor': r[1],
                'amount': int(r[2]),
                'shares': int(r[3]),
                'details': json.loads(r[4]) if r[4] else {},
                'timestamp': r[5],
            }
            for r in rows
        ]

    def count(self, event_type: Optional[str] = None) -> int:
        with self._conn() as conn:
            if event_type:
                row = conn.execute("SELECT COUNT(*) FROM vault_events WHERE event_type = ?", (event_type,)).fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) FROM vault_events").fetchone()
        return row[0]

    def get_summary(self) -> dict:
        if not self._recent:
            return {"status": "no_events"}
        return {
            "events_this_session": sum(self._counts.values()),
            "by_type": dict(self._counts),
            "last_event": self._recent[-1]['timestamp'],
            "adapter_failures": self._counts.get("adapter_failure", 0),
        }
