"""
Best-effort execution of uploaded SQL files
"""

import itertools
import os

from ..database.adapters import DatabaseAdapter
from ..database.errors import InvalidRequestError, QueryError
from ..database.models import ImportResult, StatementError
from ..utils.logger import get_logger
from .splitter import split_statements

ALLOWED_EXTENSIONS = (".sql",)

logger = get_logger("hubpanel.import")


def validate_import_filename(filename: str) -> str:
    """Reject anything that is not a .sql file before it is read"""
    if not filename:
        raise InvalidRequestError("Missing required field: file")
    _, ext = os.path.splitext(filename)
    if ext.lower() not in ALLOWED_EXTENSIONS:
        raise InvalidRequestError("Only .sql files are accepted")
    return filename


async def import_sql(driver: DatabaseAdapter, text: str) -> ImportResult:
    """Run every statement of `text`, collecting failures instead of stopping

    All statements share one reserved connection, so session settings such as
    SET FOREIGN_KEY_CHECKS or an explicit BEGIN apply to the statements that
    follow them. The connection is discarded afterwards.
    """
    statements = split_statements(text, backslash_escapes=driver.dialect.backslash_escapes)
    first = next(statements, None)
    if first is None:
        raise InvalidRequestError("No SQL statements found in the uploaded file")

    result = ImportResult(statements_total=0, statements_executed=0)

    async with driver.session(discard=True) as session:
        for index, statement in enumerate(itertools.chain([first], statements), start=1):
            result.statements_total = index
            try:
                await session.query(statement)
                result.statements_executed += 1
            except QueryError as e:
                result.errors.append(StatementError(index=index, message=e.message))

    logger.info(
        f"Imported into '{driver.name}': {result.statements_executed}/"
        f"{result.statements_total} statements, {len(result.errors)} errors"
    )
    return result
