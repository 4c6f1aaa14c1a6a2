"""
Record builders shared by coordination tests
"""

from datetime import datetime, timedelta, timezone

from agentgrid.coordination import LockRecord, StatusRecord


def lock_record(holder: str, scope: str, age_seconds: float = 0) -> dict:
    """Serialized lock record acquired ``age_seconds`` ago"""
    return LockRecord(
        holder_id=holder,
        operation=scope,
        acquired_at=datetime.now(timezone.utc) - timedelta(seconds=age_seconds),
        lock_id=f"{holder}-lock",
    ).model_dump(mode="json")


def status_record(agent_id: str, state: str, age_seconds: float = 0, **metadata) -> dict:
    """Serialized status record last written ``age_seconds`` ago"""
    return StatusRecord(
        agent_id=agent_id,
        state=state,
        updated_at=datetime.now(timezone.utc) - timedelta(seconds=age_seconds),
        metadata=metadata,
    ).model_dump(mode="json")
