from typing import Any, Protocol

from wellness_os.db.helpers import fetch_all
from wellness_os.db.pool import DatabasePoolManager

_PROTOCOL_COLUMNS = """
    p.id, p.name, p.category, p.duration_minutes, p.description, p.benefits,
    p.citations, p.evidence_level, p.is_morning_anchor
"""


class ProtocolRepository(Protocol):
    async def get_protocols_by_ids(self, protocol_ids: list[str]) -> list[dict[str, Any]]: ...

    async def get_protocols_for_modules(
        self, module_ids: list[str]
    ) -> dict[str, list[dict[str, Any]]]: ...


class PostgresProtocolRepository:
    """Read-only access to protocols and the module -> protocol mapping."""

    def __init__(self, pool: DatabasePoolManager):
        self.pool = pool

    async def get_protocols_by_ids(self, protocol_ids: list[str]) -> list[dict[str, Any]]:
        if not protocol_ids:
            return []
        query = f"""
            SELECT {_PROTOCOL_COLUMNS}
            FROM protocols p
            WHERE p.id = ANY(%s) AND p.is_active = true
        """
        rows = await fetch_all(self.pool, query, (protocol_ids,))
        # Keep retrieval rank order
        order = {pid: i for i, pid in enumerate(protocol_ids)}
        return sorted(rows, key=lambda row: order.get(str(row["id"]), len(order)))

    async def get_protocols_for_modules(
        self, module_ids: list[str]
    ) -> dict[str, list[dict[str, Any]]]:
        if not module_ids:
            return {}
        query = f"""
            SELECT m.module_id, {_PROTOCOL_COLUMNS}
            FROM module_protocol_map m
            JOIN protocols p ON p.id = m.protocol_id
            WHERE m.module_id = ANY(%s) AND p.is_active = true
            ORDER BY m.module_id, m.sort_order NULLS LAST, p.id
        """
        rows = await fetch_all(self.pool, query, (module_ids,))

        mapping: dict[str, list[dict[str, Any]]] = {module_id: [] for module_id in module_ids}
        for row in rows:
            module_id = str(row.pop("module_id"))
            mapping.setdefault(module_id, []).append(row)
        return mapping
