"""
In-process tabular store backend
"""

import asyncio
import copy
import itertools
from typing import Any, Dict, List, Optional

from agentgrid.core.exceptions import StoreError
from agentgrid.store.client import QueryOperation

DEFAULT_PAGE_SIZE = 100


class InMemoryTableStore:
    """Tables of ``{"id", "fields"}`` records; a ``None`` field value on update clears the field"""

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._ids = itertools.count(1)
        self.available = True
        for table, rows in (tables or {}).items():
            self._tables[table] = {}
            for fields in rows:
                self._insert(table, fields)

    def _insert(self, table: str, fields: Dict[str, Any], record_id: Optional[str] = None) -> Dict[str, Any]:
        record_id = record_id or f"rec{next(self._ids):06d}"
        clean = {k: v for k, v in fields.items() if v is not None}
        self._tables.setdefault(table, {})[record_id] = clean
        return {"id": record_id, "fields": copy.deepcopy(clean)}

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        if table not in self._tables:
            raise StoreError(f"Unknown table: {table}")
        return self._tables[table]

    def table_names(self) -> List[str]:
        return sorted(self._tables)

    async def test_connection(self) -> bool:
        await asyncio.sleep(0)
        return self.available

    async def query(
        self, table: str, op: QueryOperation, options: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        await asyncio.sleep(0)
        if not self.available:
            raise StoreError("Store unavailable")

        op = QueryOperation(op)
        options = options or {}

        if op == QueryOperation.CREATE:
            self._tables.setdefault(table, {})
            return [
                self._insert(table, record.get("fields", {}), record.get("id"))
                for record in options.get("records", [])
            ]

        rows = self._table(table)

        if op in (QueryOperation.SELECT, QueryOperation.FIRST_PAGE):
            wanted = options.get("fields")
            records = [
                {
                    "id": record_id,
                    "fields": copy.deepcopy(
                        {k: v for k, v in fields.items() if not wanted or k in wanted}
                    ),
                }
                for record_id, fields in rows.items()
            ]
            limit = options.get("max_records")
            if op == QueryOperation.FIRST_PAGE:
                limit = min(limit or DEFAULT_PAGE_SIZE, options.get("page_size", DEFAULT_PAGE_SIZE))
            return records[:limit] if limit else records

        if op == QueryOperation.FIND:
            record_id = options.get("id")
            if record_id not in rows:
                raise StoreError(f"Record {record_id} not found in {table}")
            return [{"id": record_id, "fields": copy.deepcopy(rows[record_id])}]

        if op == QueryOperation.UPDATE:
            updated = []
            for record in options.get("records", []):
                record_id = record["id"]
                if record_id not in rows:
                    raise StoreError(f"Record {record_id} not found in {table}")
                fields = rows[record_id]
                for key, value in record.get("fields", {}).items():
                    if value is None:
                        fields.pop(key, None)
                    else:
                        fields[key] = value
                updated.append({"id": record_id, "fields": copy.deepcopy(fields)})
            return updated

        # QueryOperation.DESTROY
        deleted = []
        for record_id in options.get("ids", []):
            if rows.pop(record_id, None) is not None:
                deleted.append({"id": record_id, "deleted": True})
        return deleted
