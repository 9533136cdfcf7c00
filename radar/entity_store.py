"""Upsert-keyed record store shared by every radar writer."""
import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from radar.models import ContractRecord, WalletRecord

logger = logging.getLogger(__name__)

CONTRACTS = "contracts"
WALLETS = "wallets"

ChangeCallback = Callable[[Dict[str, Any]], None]


class EntityStore:
    """
    Tables of JSON records keyed by a conflict column.

    Writes are convergent: upserting the same id twice leaves one record
    holding the last write. Each table is a JSON file under ``data_dir``;
    with ``data_dir=None`` everything stays in memory.

    Upserts only mark their table dirty. Writers call ``flush`` at their
    commit points (before moving a scan cursor) so a batch of records costs
    one file write per table.
    """

    def __init__(self, data_dir: Optional[Path] = None):
        self.data_dir = Path(data_dir) if data_dir else None
        self._lock = threading.Lock()
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._subscribers: List[ChangeCallback] = []
        self._dirty: Set[str] = set()

    # ------------------------------------------------------------------
    # Generic contract
    # ------------------------------------------------------------------

    def upsert(self, table: str, record: Dict[str, Any], conflict_key: str = "id") -> Dict[str, Any]:
        """
        Insert or replace ``record`` keyed by ``record[conflict_key]``.

        Returns:
            The stored record
        """
        key = record.get(conflict_key)
        if not key:
            raise ValueError(f"Record for {table} has no '{conflict_key}'")

        with self._lock:
            rows = self._table(table)
            event = "UPDATE" if key in rows else "INSERT"
            rows[key] = dict(record)
            self._dirty.add(table)
            stored = dict(rows[key])
            subscribers = list(self._subscribers)

        change = {"event": event, "table": table, "record": stored}
        for callback in subscribers:
            try:
                callback(change)
            except Exception as e:
                logger.error(f"[STORE] Change subscriber failed: {e}")
        return stored

    def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = "timestamp",
        descending: bool = True,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """
        Filtered, ordered, paginated read.

        Filter values of ``None`` or ``"all"`` match everything.
        """
        active = {k: v for k, v in (filters or {}).items() if v is not None and v != "all"}
        with self._lock:
            rows = [dict(r) for r in self._table(table).values()]

        rows = [r for r in rows if all(r.get(k) == v for k, v in active.items())]
        if order_by:
            # rows missing the column sort last
            present = [r for r in rows if r.get(order_by) is not None]
            missing = [r for r in rows if r.get(order_by) is None]
            present.sort(key=lambda r: r[order_by], reverse=descending)
            rows = present + missing
        return rows[offset:offset + limit]

    def get(self, table: str, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._table(table).get(key)
        return dict(row) if row else None

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._table(table))

    def subscribe(self, callback: ChangeCallback) -> None:
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: ChangeCallback) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    # ------------------------------------------------------------------
    # Record helpers
    # ------------------------------------------------------------------

    def save_contract(self, record: ContractRecord) -> Dict[str, Any]:
        return self.upsert(CONTRACTS, record.to_dict())

    def save_wallet(self, record: WalletRecord) -> Dict[str, Any]:
        return self.upsert(WALLETS, record.to_dict())

    def contracts(self, network: Optional[str] = None, tag: Optional[str] = None,
                  limit: int = 100, offset: int = 0) -> List[ContractRecord]:
        filters = {"network": network, "tag": tag.upper() if tag else None}
        rows = self.select(CONTRACTS, filters, "timestamp", True, limit, offset)
        return [ContractRecord.from_dict(r) for r in rows]

    def wallets(self, network: Optional[str] = None, multisig: Optional[bool] = None,
                limit: int = 100, offset: int = 0) -> List[WalletRecord]:
        filters = {"network": network, "is_multisig": multisig}
        rows = self.select(WALLETS, filters, "last_seen", True, limit, offset)
        return [WalletRecord.from_dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        rows = self._tables.get(table)
        if rows is None:
            rows = self._load(table)
            self._tables[table] = rows
        return rows

    def _path(self, table: str) -> Optional[Path]:
        if self.data_dir is None:
            return None
        return self.data_dir / f"{table}.json"

    def _load(self, table: str) -> Dict[str, Dict[str, Any]]:
        path = self._path(table)
        if path is None or not path.exists():
            return {}
        try:
            with open(path, "r", encoding="utf-8") as f:
                content = f.read().strip()
            return json.loads(content) if content else {}
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"[STORE] Failed to read {path}: {e}")
            return {}

    def flush(self) -> List[str]:
        """
        Write every table changed since the last flush.

        Returns:
            Names of the tables that were dirty
        """
        with self._lock:
            tables = sorted(self._dirty)
            for table in tables:
                self._write(table)
            self._dirty.clear()
        return tables

    def _write(self, table: str) -> None:
        path = self._path(table)
        if path is None:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self._tables[table], f, indent=2)
        tmp.replace(path)
