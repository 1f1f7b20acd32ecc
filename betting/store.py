"""Ledger storage for the betting platform.

SQLite-backed CRUD for agents, bets, disputes, the bet audit log,
notifications, consumed payment references and the settlement idempotency
ledger. Multi-row writes go
through transaction(); status changes are compare-and-set so concurrent
callers cannot both win. Insert helpers do not commit on their own; call
them inside transaction().
"""

import json
import sqlite3
import threading
import time
import uuid
from contextlib import contextmanager
from decimal import Decimal

from protocol import (
    STATE_TRANSITIONS, BetStatus, DisputeStatus, AgentStatus, EventType,
    NotificationType, SettlementState, SettlementKind,
)
from betting.events import encode_payload


def new_id() -> str:
    return uuid.uuid4().hex[:12]


class LedgerStore:
    """SQLite-backed ledger with state machine enforcement on bet status."""

    def __init__(self, db_path: str = ":memory:", clock=time.time):
        self.db = sqlite3.connect(db_path, check_same_thread=False)
        self.db.row_factory = sqlite3.Row
        self.clock = clock
        self._lock = threading.RLock()
        self._depth = 0
        self._init_db()

    def _init_db(self):
        # Enable WAL mode for safe concurrent reads during writes
        self.db.execute("PRAGMA journal_mode=WAL")
        self.db.execute("PRAGMA foreign_keys=ON")
        self.db.executescript("""
            CREATE TABLE IF NOT EXISTS agents (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL UNIQUE,
                address TEXT NOT NULL UNIQUE,
                status TEXT NOT NULL DEFAULT 'pending_claim',
                reputation INTEGER NOT NULL DEFAULT 0,
                wins INTEGER NOT NULL DEFAULT 0,
                losses INTEGER NOT NULL DEFAULT 0,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL,
                verified_at REAL
            );

            CREATE TABLE IF NOT EXISTS bets (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                description TEXT NOT NULL,
                terms TEXT NOT NULL,
                category TEXT,
                status TEXT NOT NULL DEFAULT 'open',
                proposer_id TEXT NOT NULL REFERENCES agents(id),
                counter_id TEXT REFERENCES agents(id),
                stake TEXT NOT NULL,
                win_claimer_id TEXT REFERENCES agents(id),
                win_claim_evidence TEXT,
                win_claimed_at REAL,
                winner_id TEXT REFERENCES agents(id),
                escrow_tx_hash TEXT,
                resolution_tx_hash TEXT,
                expires_at REAL NOT NULL,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL,
                countered_at REAL,
                resolved_at REAL,
                CHECK (counter_id IS NULL OR counter_id != proposer_id)
            );
            CREATE INDEX IF NOT EXISTS idx_bets_status ON bets(status, created_at);
            CREATE INDEX IF NOT EXISTS idx_bets_proposer ON bets(proposer_id);
            CREATE INDEX IF NOT EXISTS idx_bets_counter ON bets(counter_id);

            CREATE TABLE IF NOT EXISTS disputes (
                id TEXT PRIMARY KEY,
                bet_id TEXT NOT NULL REFERENCES bets(id),
                raised_by_id TEXT NOT NULL REFERENCES agents(id),
                reason TEXT NOT NULL,
                evidence TEXT,
                counter_reason TEXT,
                counter_evidence TEXT,
                responded_at REAL,
                status TEXT NOT NULL DEFAULT 'pending',
                resolved_by_id TEXT,
                resolution TEXT,
                winner_id TEXT REFERENCES agents(id),
                created_at REAL NOT NULL,
                resolved_at REAL
            );
            CREATE UNIQUE INDEX IF NOT EXISTS idx_one_pending_dispute
                ON disputes(bet_id) WHERE status = 'pending';

            CREATE TABLE IF NOT EXISTS bet_events (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                bet_id TEXT NOT NULL REFERENCES bets(id),
                agent_id TEXT NOT NULL,
                type TEXT NOT NULL,
                data TEXT NOT NULL DEFAULT '{}',
                created_at REAL NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_events_bet ON bet_events(bet_id, seq);

            CREATE TABLE IF NOT EXISTS notifications (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                agent_id TEXT NOT NULL REFERENCES agents(id),
                bet_id TEXT REFERENCES bets(id),
                type TEXT NOT NULL,
                message TEXT NOT NULL,
                read INTEGER NOT NULL DEFAULT 0,
                created_at REAL NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_notifications_agent ON notifications(agent_id, seq);

            CREATE TABLE IF NOT EXISTS payments (
                payment_ref TEXT PRIMARY KEY,
                agent_id TEXT NOT NULL,
                purpose TEXT NOT NULL,
                bet_id TEXT,
                amount TEXT NOT NULL,
                created_at REAL NOT NULL
            );

            CREATE TABLE IF NOT EXISTS settlements (
                key TEXT PRIMARY KEY,
                bet_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                address TEXT NOT NULL,
                amount TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                tx_ref TEXT,
                error TEXT,
                intent TEXT NOT NULL DEFAULT '{}',
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            );
        """)
        self.db.commit()

    def _one(self, sql: str, params=()):
        with self._lock:
            return self.db.execute(sql, params).fetchone()

    def _all(self, sql: str, params=()):
        with self._lock:
            return self.db.execute(sql, params).fetchall()

    # --- Transactions ---

    @contextmanager
    def transaction(self):
        """Run a block of writes as one atomic unit.

        Nested calls join the outermost transaction. On any exception every
        write made inside the block is rolled back.
        """
        with self._lock:
            self._depth += 1
            try:
                yield self
            except BaseException:
                if self._depth == 1:
                    self.db.rollback()
                raise
            else:
                if self._depth == 1:
                    self.db.commit()
            finally:
                self._depth -= 1

    # --- Agents ---

    def create_agent(self, name: str, address: str,
                     status: AgentStatus = AgentStatus.PENDING_CLAIM) -> str:
        agent_id = new_id()
        now = self.clock()
        verified_at = now if status == AgentStatus.VERIFIED else None
        with self.transaction():
            self.db.execute(
                "INSERT INTO agents (id, name, address, status, created_at, updated_at, verified_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (agent_id, name, address, status.value, now, now, verified_at),
            )
        return agent_id

    def get_agent(self, agent_id: str) -> dict | None:
        row = self._one("SELECT * FROM agents WHERE id = ?", (agent_id,))
        return dict(row) if row else None

    def set_agent_status(self, agent_id: str, status: AgentStatus) -> bool:
        now = self.clock()
        with self.transaction():
            cursor = self.db.execute(
                "UPDATE agents SET status = ?, updated_at = ?, "
                "verified_at = CASE WHEN ? = 'verified' THEN ? ELSE verified_at END "
                "WHERE id = ?",
                (status.value, now, status.value, now, agent_id),
            )
        return cursor.rowcount > 0

    def apply_reputation(self, agent_id: str, delta: int, won: bool) -> None:
        """Add a reputation delta and count the win or loss."""
        column = "wins" if won else "losses"
        self.db.execute(
            f"UPDATE agents SET reputation = reputation + ?, {column} = {column} + 1, "
            "updated_at = ? WHERE id = ?",
            (delta, self.clock(), agent_id),
        )

    def leaderboard(self, limit: int = 20) -> list[dict]:
        rows = self._all(
            "SELECT * FROM agents WHERE status = 'verified' "
            "ORDER BY reputation DESC, wins DESC, created_at ASC LIMIT ?",
            (limit,),
        )
        return [dict(r) for r in rows]

    # --- Bets ---

    def create_bet(self, proposer_id: str, title: str, description: str, terms: str,
                   stake: str, expires_at: float, category: str | None = None,
                   escrow_tx_hash: str | None = None) -> str:
        bet_id = new_id()
        now = self.clock()
        self.db.execute(
            "INSERT INTO bets (id, title, description, terms, category, status, proposer_id, "
            "stake, escrow_tx_hash, expires_at, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, 'open', ?, ?, ?, ?, ?, ?)",
            (bet_id, title, description, terms, category, proposer_id, stake,
             escrow_tx_hash, expires_at, now, now),
        )
        return bet_id

    def get_bet(self, bet_id: str) -> dict | None:
        row = self._one("SELECT * FROM bets WHERE id = ?", (bet_id,))
        return dict(row) if row else None

    def transition_bet(self, bet_id: str, from_statuses, to_status: BetStatus, **fields) -> bool:
        """Move a bet to `to_status` only if it is currently in one of `from_statuses`.

        Extra keyword arguments are written to the same row in the same UPDATE.
        Returns False when the bet was not in an expected status (lost race).
        """
        if isinstance(from_statuses, BetStatus):
            from_statuses = [from_statuses]
        from_statuses = list(from_statuses)
        for current in from_statuses:
            if to_status not in STATE_TRANSITIONS.get(current, set()):
                raise ValueError(f"Invalid state transition: {current.value} -> {to_status.value}")

        fields["status"] = to_status.value
        fields.setdefault("updated_at", self.clock())
        assignments = ", ".join(f"{k} = ?" for k in fields)
        placeholders = ", ".join("?" for _ in from_statuses)
        params = list(fields.values()) + [bet_id] + [s.value for s in from_statuses]
        with self.transaction():
            cursor = self.db.execute(
                f"UPDATE bets SET {assignments} WHERE id = ? AND status IN ({placeholders})",
                params,
            )
        return cursor.rowcount > 0

    def list_bets(self, status: BetStatus | None = None, agent_id: str | None = None,
                  sort: str = "recent", limit: int = 20) -> list[dict]:
        """Filter bets by status and/or participant for the feed."""
        clauses, params = [], []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if agent_id:
            clauses.append("(proposer_id = ? OR counter_id = ?)")
            params.extend([agent_id, agent_id])
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        if sort == "high_stakes":
            order = "CAST(stake AS REAL) DESC, created_at DESC"
        else:
            order = "created_at DESC"
        rows = self._all(
            f"SELECT * FROM bets {where} ORDER BY {order} LIMIT ?",
            params + [limit],
        )
        return [dict(r) for r in rows]

    def list_by_status(self, status: BetStatus, limit: int = 100) -> list[dict]:
        rows = self._all(
            "SELECT * FROM bets WHERE status = ? ORDER BY created_at ASC LIMIT ?",
            (status.value, limit),
        )
        return [dict(r) for r in rows]

    # --- Disputes ---

    def create_dispute(self, bet_id: str, raised_by_id: str, reason: str,
                       evidence: str | None = None) -> str:
        dispute_id = new_id()
        self.db.execute(
            "INSERT INTO disputes (id, bet_id, raised_by_id, reason, evidence, status, created_at) "
            "VALUES (?, ?, ?, ?, ?, 'pending', ?)",
            (dispute_id, bet_id, raised_by_id, reason, evidence, self.clock()),
        )
        return dispute_id

    def get_dispute(self, dispute_id: str) -> dict | None:
        row = self._one("SELECT * FROM disputes WHERE id = ?", (dispute_id,))
        return dict(row) if row else None

    def disputes_for_bet(self, bet_id: str) -> list[dict]:
        rows = self._all(
            "SELECT * FROM disputes WHERE bet_id = ? ORDER BY created_at ASC",
            (bet_id,),
        )
        return [dict(r) for r in rows]

    def list_disputes(self, status: DisputeStatus = DisputeStatus.PENDING,
                      limit: int = 100) -> list[dict]:
        rows = self._all(
            "SELECT * FROM disputes WHERE status = ? ORDER BY created_at DESC LIMIT ?",
            (status.value, limit),
        )
        return [dict(r) for r in rows]

    def record_dispute_response(self, dispute_id: str, reason: str,
                                evidence: str | None = None) -> bool:
        """Store the rebuttal. Only the first response on a pending dispute sticks."""
        cursor = self.db.execute(
            "UPDATE disputes SET counter_reason = ?, counter_evidence = ?, responded_at = ? "
            "WHERE id = ? AND status = 'pending' AND counter_reason IS NULL",
            (reason, evidence, self.clock(), dispute_id),
        )
        return cursor.rowcount > 0

    def resolve_dispute(self, dispute_id: str, winner_id: str, resolution: str,
                        resolved_by_id: str) -> bool:
        cursor = self.db.execute(
            "UPDATE disputes SET status = 'resolved', winner_id = ?, resolution = ?, "
            "resolved_by_id = ?, resolved_at = ? WHERE id = ? AND status = 'pending'",
            (winner_id, resolution, resolved_by_id, self.clock(), dispute_id),
        )
        return cursor.rowcount > 0

    # --- Audit log ---

    def append_event(self, bet_id: str, agent_id: str, event_type: EventType, payload) -> str:
        data = encode_payload(event_type, payload)
        event_id = new_id()
        self.db.execute(
            "INSERT INTO bet_events (id, bet_id, agent_id, type, data, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (event_id, bet_id, agent_id, event_type.value, json.dumps(data), self.clock()),
        )
        return event_id

    def list_events(self, bet_id: str) -> list[dict]:
        rows = self._all(
            "SELECT id, bet_id, agent_id, type, data, created_at FROM bet_events "
            "WHERE bet_id = ? ORDER BY seq ASC",
            (bet_id,),
        )
        events = []
        for r in rows:
            e = dict(r)
            e["data"] = json.loads(e["data"])
            events.append(e)
        return events

    # --- Notifications ---

    def notify(self, agent_id: str, bet_id: str | None, ntype: NotificationType,
               message: str) -> str:
        notification_id = new_id()
        self.db.execute(
            "INSERT INTO notifications (id, agent_id, bet_id, type, message, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (notification_id, agent_id, bet_id, ntype.value, message, self.clock()),
        )
        return notification_id

    def list_notifications(self, agent_id: str, unread_only: bool = False,
                           limit: int = 50) -> list[dict]:
        query = "SELECT * FROM notifications WHERE agent_id = ?"
        if unread_only:
            query += " AND read = 0"
        query += " ORDER BY seq DESC LIMIT ?"
        rows = self._all(query, (agent_id, limit))
        out = []
        for r in rows:
            n = dict(r)
            n.pop("seq", None)
            n["read"] = bool(n["read"])
            out.append(n)
        return out

    def unread_count(self, agent_id: str) -> int:
        row = self._one(
            "SELECT COUNT(*) FROM notifications WHERE agent_id = ? AND read = 0",
            (agent_id,),
        )
        return row[0]

    def mark_read(self, notification_id: str, agent_id: str) -> bool:
        with self.transaction():
            cursor = self.db.execute(
                "UPDATE notifications SET read = 1 WHERE id = ? AND agent_id = ?",
                (notification_id, agent_id),
            )
        return cursor.rowcount > 0

    def mark_all_read(self, agent_id: str) -> int:
        with self.transaction():
            cursor = self.db.execute(
                "UPDATE notifications SET read = 1 WHERE agent_id = ? AND read = 0",
                (agent_id,),
            )
        return cursor.rowcount

    # --- Payments ---

    def consume_payment(self, payment_ref: str, agent_id: str, purpose: str,
                        amount: str, bet_id: str | None = None) -> bool:
        """Mark a payment reference as spent. False if it was already used."""
        with self.transaction():
            cursor = self.db.execute(
                "INSERT OR IGNORE INTO payments (payment_ref, agent_id, purpose, bet_id, amount, "
                "created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (payment_ref, agent_id, purpose, bet_id, amount, self.clock()),
            )
        return cursor.rowcount > 0

    def get_payment(self, payment_ref: str) -> dict | None:
        row = self._one("SELECT * FROM payments WHERE payment_ref = ?", (payment_ref,))
        return dict(row) if row else None

    # --- Settlement ledger ---
    #
    # A pending record is leased to whoever wrote it; updated_at is the lease
    # start. Only the lease holder may finish it, and recovery only takes
    # over a lease older than its cutoff.

    def begin_settlement(self, key: str, bet_id: str, kind: SettlementKind,
                         address: str, amount: str, intent: dict) -> dict:
        """Record a settlement intent, or return the existing record for `key`.

        A failed record is re-armed as pending with the new intent so the
        transition can be retried.
        """
        now = self.clock()
        with self.transaction():
            existing = self.get_settlement(key)
            if existing is None:
                self.db.execute(
                    "INSERT INTO settlements (key, bet_id, kind, address, amount, status, intent, "
                    "created_at, updated_at) VALUES (?, ?, ?, ?, ?, 'pending', ?, ?, ?)",
                    (key, bet_id, kind.value, address, amount, json.dumps(intent), now, now),
                )
            elif existing["status"] == SettlementState.FAILED.value:
                self.db.execute(
                    "UPDATE settlements SET status = 'pending', error = NULL, address = ?, "
                    "amount = ?, intent = ?, updated_at = ? WHERE key = ?",
                    (address, amount, json.dumps(intent), now, key),
                )
        return self.get_settlement(key)

    def get_settlement(self, key: str) -> dict | None:
        row = self._one("SELECT * FROM settlements WHERE key = ?", (key,))
        if not row:
            return None
        s = dict(row)
        s["intent"] = json.loads(s["intent"])
        return s

    def take_over_settlement(self, key: str, stale_before: float) -> bool:
        """Renew the lease on a pending record last touched before `stale_before`."""
        with self.transaction():
            cursor = self.db.execute(
                "UPDATE settlements SET updated_at = ? "
                "WHERE key = ? AND status = 'pending' AND updated_at <= ?",
                (self.clock(), key, stale_before),
            )
        return cursor.rowcount > 0

    def finish_settlement(self, key: str, state: SettlementState,
                          tx_ref: str | None = None, error: str | None = None) -> bool:
        """Move a pending record to its final state. False if it was already final."""
        with self.transaction():
            cursor = self.db.execute(
                "UPDATE settlements SET status = ?, tx_ref = ?, error = ?, updated_at = ? "
                "WHERE key = ? AND status = 'pending'",
                (state.value, tx_ref, error, self.clock(), key),
            )
        return cursor.rowcount > 0

    # --- Stats ---

    def stats(self) -> dict:
        now = self.clock()
        pending = self._one(
            "SELECT COUNT(*) FROM disputes WHERE status = 'pending'")[0]
        open_bets = self._one(
            "SELECT COUNT(*) FROM bets WHERE status = 'open'")[0]
        verified = self._one(
            "SELECT COUNT(*) FROM agents WHERE status = 'verified'")[0]
        new_agents = self._one(
            "SELECT COUNT(*) FROM agents WHERE created_at >= ?", (now - 3600,))[0]
        stakes = self._all(
            "SELECT stake FROM bets WHERE created_at >= ?", (now - 86400,))
        volume = sum((Decimal(r["stake"]) for r in stakes), Decimal("0"))
        return {
            "pending_disputes": pending,
            "active_bets": open_bets,
            "verified_agents": verified,
            "new_agents_last_hour": new_agents,
            "volume_24h": str(volume),
        }

    def close(self):
        self.db.close()
