from __future__ import annotations

import json
import sqlite3
from datetime import UTC, datetime
from pathlib import Path


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


class SqliteStore:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def close(self) -> None:
        self.conn.close()

    def _init_schema(self) -> None:
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS audit_event (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              event_type TEXT NOT NULL,
              listing_id INTEGER NULL,
              payload_json TEXT NOT NULL,
              created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS transaction_state (
              tx_hash TEXT PRIMARY KEY,
              listing_id INTEGER NOT NULL,
              intent_kind TEXT NOT NULL,
              role TEXT NOT NULL,
              state TEXT NOT NULL,
              reason TEXT NULL,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );
            """
        )
        self.conn.commit()

    def add_audit_event(self, event_type: str, payload: dict, listing_id: int | None = None) -> None:
        self.conn.execute(
            """
            INSERT INTO audit_event (event_type, listing_id, payload_json, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (event_type, listing_id, json.dumps(payload, sort_keys=True), _utcnow_iso()),
        )
        self.conn.commit()

    def list_recent_audit_events(
        self,
        *,
        event_types: list[str] | None = None,
        listing_id: int | None = None,
        limit: int = 50,
    ) -> list[dict]:
        if limit <= 0:
            return []
        where_clauses: list[str] = []
        params: list[object] = []
        if event_types:
            placeholders = ",".join("?" for _ in event_types)
            where_clauses.append(f"event_type IN ({placeholders})")
            params.extend(event_types)
        if listing_id is not None:
            where_clauses.append("listing_id = ?")
            params.append(int(listing_id))
        where_sql = ""
        if where_clauses:
            where_sql = "WHERE " + " AND ".join(where_clauses)
        rows = self.conn.execute(
            f"""
            SELECT id, event_type, listing_id, payload_json, created_at
            FROM audit_event
            {where_sql}
            ORDER BY id DESC
            LIMIT ?
            """,
            [*params, int(limit)],
        ).fetchall()
        events: list[dict] = []
        for row in rows:
            payload: dict | list | str | int | float | bool | None
            try:
                payload = json.loads(str(row["payload_json"]))
            except ValueError:
                payload = str(row["payload_json"])
            events.append(
                {
                    "id": int(row["id"]),
                    "event_type": str(row["event_type"]),
                    "listing_id": int(row["listing_id"]) if row["listing_id"] is not None else None,
                    "payload": payload,
                    "created_at": str(row["created_at"]),
                }
            )
        return events

    def upsert_transaction_state(
        self,
        *,
        tx_hash: str,
        listing_id: int,
        intent_kind: str,
        role: str,
        state: str,
        reason: str | None = None,
    ) -> None:
        now = _utcnow_iso()
        self.conn.execute(
            """
            INSERT INTO transaction_state
              (tx_hash, listing_id, intent_kind, role, state, reason, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(tx_hash) DO UPDATE SET
              state = excluded.state,
              reason = COALESCE(excluded.reason, transaction_state.reason),
              updated_at = excluded.updated_at
            """,
            (tx_hash, int(listing_id), intent_kind, role, state, reason, now, now),
        )
        self.conn.commit()

    def list_transaction_states(
        self,
        *,
        listing_id: int | None = None,
        limit: int = 200,
    ) -> list[dict]:
        if limit <= 0:
            return []
        if listing_id is not None:
            rows = self.conn.execute(
                """
                SELECT tx_hash, listing_id, intent_kind, role, state, reason, created_at, updated_at
                FROM transaction_state
                WHERE listing_id = ?
                ORDER BY updated_at DESC
                LIMIT ?
                """,
                (int(listing_id), int(limit)),
            ).fetchall()
        else:
            rows = self.conn.execute(
                """
                SELECT tx_hash, listing_id, intent_kind, role, state, reason, created_at, updated_at
                FROM transaction_state
                ORDER BY updated_at DESC
                LIMIT ?
                """,
                (int(limit),),
            ).fetchall()
        return [
            {
                "tx_hash": str(r["tx_hash"]),
                "listing_id": int(r["listing_id"]),
                "intent_kind": str(r["intent_kind"]),
                "role": str(r["role"]),
                "state": str(r["state"]),
                "reason": str(r["reason"]) if r["reason"] is not None else None,
                "created_at": str(r["created_at"]),
                "updated_at": str(r["updated_at"]),
            }
            for r in rows
        ]
