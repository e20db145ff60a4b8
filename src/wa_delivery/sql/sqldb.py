# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Database manager holding an adapter and its registered tables."""

from __future__ import annotations

from typing import TYPE_CHECKING

from . import get_adapter

if TYPE_CHECKING:
    from .base import DbAdapter
    from .table import Table


class SqlDb:
    """Async database with table registration.

    Tables are registered by class; each is instantiated with a reference
    back to this database so it can reach the shared adapter.
    """

    def __init__(self, connection_string: str):
        self.connection_string = connection_string
        self.adapter: DbAdapter = get_adapter(connection_string)
        self._tables: dict[str, Table] = {}

    def add_table(self, table_class: type[Table]) -> Table:
        table = table_class(self)
        self._tables[table.name] = table
        return table

    def table(self, name: str) -> Table:
        try:
            return self._tables[name]
        except KeyError:
            raise ValueError(f"Table '{name}' is not registered") from None

    @property
    def tables(self) -> list[Table]:
        return list(self._tables.values())

    async def connect(self) -> None:
        await self.adapter.connect()

    async def close(self) -> None:
        await self.adapter.close()

    async def check_structure(self) -> None:
        """Create every registered table that does not exist yet."""
        for table in self._tables.values():
            await table.create_schema()


__all__ = ["SqlDb"]
