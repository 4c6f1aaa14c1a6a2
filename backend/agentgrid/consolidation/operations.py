"""
Field-level consolidation operations applied through the store client
"""

from collections import defaultdict
from typing import Any, Dict, List, Optional

import structlog

from agentgrid.consolidation.models import (
    ContentOverlapResolution,
    DuplicateFieldConsolidation,
    FieldRename,
    Operation,
    SimilarFieldMerge,
    split_field,
)
from agentgrid.store.client import QueryOperation, TableStoreClient

logger = structlog.get_logger(__name__)


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict, tuple, set)):
        return len(value) == 0
    return False


def _normalize(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


def fields_by_table(operation: Operation) -> Dict[str, List[str]]:
    grouped: Dict[str, List[str]] = defaultdict(list)
    for qualified in operation.source_fields:
        table, name = split_field(qualified)
        if name not in grouped[table]:
            grouped[table].append(name)
    return dict(grouped)


class OperationRunner:
    """Describe, apply, validate and snapshot consolidation operations"""

    def __init__(self, store: TableStoreClient):
        self.store = store

    def describe(self, operation: Operation) -> Dict[str, Any]:
        """Intended effect of an operation, without touching the store"""
        result: Dict[str, Any] = {"dry_run": True, "kind": operation.kind.value}

        if isinstance(operation, DuplicateFieldConsolidation):
            result.update(
                action=f"Would consolidate {len(operation.source_fields)} fields into {operation.target_field}",
                source_fields=list(operation.source_fields),
                target_field=operation.target_field,
                affected_tables=list(operation.affected_tables),
                estimated_records=operation.estimated_records,
            )
        elif isinstance(operation, SimilarFieldMerge):
            result.update(
                action=f"Would merge {operation.field1} and {operation.field2} into {operation.target_field}",
                field1=operation.field1,
                field2=operation.field2,
                merge_strategy=operation.merge_strategy,
                conflict_resolution=operation.conflict_resolution,
            )
        elif isinstance(operation, ContentOverlapResolution):
            result.update(
                action="Would remove values duplicated across overlapping fields",
                overlapping_fields=list(operation.source_fields),
                resolution_strategy=operation.resolution_strategy,
            )
        elif isinstance(operation, FieldRename):
            result.update(
                action=f"Would rename {operation.old_name} to {operation.new_name}",
                old_name=operation.old_name,
                new_name=operation.new_name,
                table=operation.table,
            )
        else:
            raise ValueError(f"Unsupported operation kind: {operation.kind}")

        return result

    async def _select(self, table: str, fields: List[str]) -> List[Dict[str, Any]]:
        return await self.store.query(table, QueryOperation.SELECT, {"fields": fields})

    async def _update(self, table: str, updates: List[Dict[str, Any]]):
        if updates:
            await self.store.query(table, QueryOperation.UPDATE, {"records": updates})

    async def capture(self, operation: Operation) -> Dict[str, List[Dict[str, Any]]]:
        """Current values of every field the operation may touch"""
        data = {}
        for table, names in fields_by_table(operation).items():
            wanted = list(dict.fromkeys(names + [operation.target_field]))
            data[table] = await self._select(table, wanted)
        return data

    async def run(self, operation: Operation) -> Dict[str, Any]:
        if isinstance(operation, DuplicateFieldConsolidation):
            return await self._merge(operation, track_conflicts=False)
        if isinstance(operation, SimilarFieldMerge):
            return await self._merge(operation, track_conflicts=True)
        if isinstance(operation, ContentOverlapResolution):
            return await self._resolve_overlap(operation)
        if isinstance(operation, FieldRename):
            return await self._rename(operation)
        raise ValueError(f"Unsupported operation kind: {operation.kind}")

    async def _merge(self, operation: Operation, track_conflicts: bool) -> Dict[str, Any]:
        target = operation.target_field
        populated: Dict[str, List[str]] = {}
        updated = 0
        conflicts = 0

        for table, sources in fields_by_table(operation).items():
            records = await self._select(table, list(dict.fromkeys(sources + [target])))
            updates = []
            populated[table] = []

            for record in records:
                fields = record.get("fields", {})
                values = [fields.get(name) for name in sources]
                present = [v for v in values if not is_empty(v)]
                if not present and is_empty(fields.get(target)):
                    continue

                chosen = present[0] if present else fields.get(target)
                if track_conflicts and len({_normalize(v) for v in present}) > 1:
                    conflicts += 1

                change = {}
                if fields.get(target) != chosen:
                    change[target] = chosen
                for name in sources:
                    if name != target and not is_empty(fields.get(name)):
                        change[name] = None

                populated[table].append(record["id"])
                if change:
                    updates.append({"id": record["id"], "fields": change})

            await self._update(table, updates)
            updated += len(updates)

        result = {
            "kind": operation.kind.value,
            "target_field": target,
            "records_updated": updated,
            "populated": populated,
        }
        if track_conflicts:
            result["conflicts"] = conflicts
        logger.info("Fields merged", kind=operation.kind.value, target=target, records_updated=updated)
        return result

    async def _resolve_overlap(self, operation: ContentOverlapResolution) -> Dict[str, Any]:
        removed = 0
        updated = 0

        for table, names in fields_by_table(operation).items():
            records = await self._select(table, names)
            updates = []
            for record in records:
                fields = record.get("fields", {})
                seen = set()
                change = {}
                for name in names:
                    value = fields.get(name)
                    if is_empty(value):
                        continue
                    key = _normalize(value)
                    if key in seen:
                        change[name] = None
                        removed += 1
                    else:
                        seen.add(key)
                if change:
                    updates.append({"id": record["id"], "fields": change})
            await self._update(table, updates)
            updated += len(updates)

        logger.info("Overlapping content resolved", duplicates_removed=removed, records_updated=updated)
        return {
            "kind": operation.kind.value,
            "duplicates_removed": removed,
            "records_updated": updated,
        }

    async def _rename(self, operation: FieldRename) -> Dict[str, Any]:
        table, old, new = operation.table, operation.old_name, operation.new_name
        if old == new:
            return {"kind": operation.kind.value, "table": table, "records_moved": 0, "moved": []}

        records = await self._select(table, [old, new])
        updates = []
        for record in records:
            value = record.get("fields", {}).get(old)
            if not is_empty(value):
                updates.append({"id": record["id"], "fields": {new: value, old: None}})
        await self._update(table, updates)

        logger.info("Field renamed", table=table, old_name=old, new_name=new, records_moved=len(updates))
        return {
            "kind": operation.kind.value,
            "table": table,
            "records_moved": len(updates),
            "moved": [u["id"] for u in updates],
        }

    async def validate(self, operation: Operation, result: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Check the store reflects the operation; ``result`` is the run output if available"""
        issues: List[str] = []
        checked = 0
        result = result or {}

        if isinstance(operation, (DuplicateFieldConsolidation, SimilarFieldMerge)):
            target = operation.target_field
            populated = result.get("populated", {})
            for table, sources in fields_by_table(operation).items():
                records = await self._select(table, list(dict.fromkeys(sources + [target])))
                expected = set(populated.get(table, []))
                for record in records:
                    checked += 1
                    fields = record.get("fields", {})
                    leftover = [n for n in sources if n != target and not is_empty(fields.get(n))]
                    if (leftover or record["id"] in expected) and is_empty(fields.get(target)):
                        issues.append(f"{table}:{record['id']} missing value for {target}")

        elif isinstance(operation, ContentOverlapResolution):
            for table, names in fields_by_table(operation).items():
                for record in await self._select(table, names):
                    checked += 1
                    values = [
                        _normalize(v) for v in (record.get("fields", {}).get(n) for n in names)
                        if not is_empty(v)
                    ]
                    if len(values) != len(set(values)):
                        issues.append(f"{table}:{record['id']} still has overlapping values")

        elif isinstance(operation, FieldRename):
            if operation.old_name != operation.new_name:
                moved = set(result.get("moved", []))
                for record in await self._select(operation.table, [operation.old_name, operation.new_name]):
                    checked += 1
                    fields = record.get("fields", {})
                    if not is_empty(fields.get(operation.old_name)):
                        issues.append(f"{operation.table}:{record['id']} still has {operation.old_name}")
                    elif record["id"] in moved and is_empty(fields.get(operation.new_name)):
                        issues.append(f"{operation.table}:{record['id']} missing {operation.new_name}")

        else:
            raise ValueError(f"Unsupported operation kind: {operation.kind}")

        return {"passed": not issues, "records_checked": checked, "issues": issues}
