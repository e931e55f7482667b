"""
Backup download and SQL import
"""

from datetime import datetime, timezone
from typing import Optional, Tuple

from ..backup.dump import DEFAULT_ROW_LIMIT, DumpGenerator, dump_filename
from ..backup.importer import import_sql, validate_import_filename
from ..database.errors import InvalidRequestError
from ..database.models import ImportResult
from .base import BaseService


class BackupService(BaseService):
    """Produce SQL dumps and replay uploaded ones"""

    def __init__(self, registry, activity=None, row_limit: int = DEFAULT_ROW_LIMIT):
        super().__init__(registry, activity)
        self.row_limit = row_limit

    async def create_backup(self, database: str, user: str = "unknown",
                            now: Optional[datetime] = None) -> Tuple[str, str]:
        """Return (filename, dump text)"""
        driver = await self.registry.resolve(database)
        now = now or datetime.now(timezone.utc)

        generator = DumpGenerator(driver, row_limit=self.row_limit, now=now)
        dump = await generator.generate()

        await self._log(
            user, database, "BACKUP",
            f"Backup created successfully ({generator.tables_dumped} tables, {generator.rows_dumped} rows)",
            f"Backup for {database} ({driver.config.engine_kind.value})",
        )
        return dump_filename(database, now), dump

    async def import_file(self, database: str, filename: str, content: bytes,
                          user: str = "unknown") -> ImportResult:
        validate_import_filename(filename)
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise InvalidRequestError("The uploaded file is not valid UTF-8 text")

        driver = await self.registry.resolve(database)
        result = await import_sql(driver, text)

        details = (f"Imported {filename}: {result.statements_executed}/"
                   f"{result.statements_total} statements executed")
        if result.errors:
            details += f", {len(result.errors)} failed"
        await self._log(user, database, "IMPORT", details, f"IMPORT {filename}")
        return result
