"""
Deployment Log Store
====================
Writes the captured build log into the deployment's row.

One UPDATE per job, overwriting the log column with the full
newline-joined log (last writer wins). The table and column names are
configuration: the schema itself belongs to the deployment API.
"""
import logging
from typing import Optional, Union

from sqlalchemy import column, table, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from build_worker.core.config import (
    DEPLOYMENT_ID_COLUMN,
    DEPLOYMENT_LOG_COLUMN,
    DEPLOYMENT_TABLE,
)
from build_worker.core.errors import LogPersistenceError
from build_worker.services.clients import get_db_engine

logger = logging.getLogger(__name__)


class DeploymentLogStore:
    def __init__(
        self,
        engine: Engine,
        table_name: str = DEPLOYMENT_TABLE,
        id_column: str = DEPLOYMENT_ID_COLUMN,
        log_column: str = DEPLOYMENT_LOG_COLUMN,
    ) -> None:
        self.engine = engine
        self.id_column = id_column
        self.log_column = log_column
        self._table = table(table_name, column(id_column), column(log_column))

    def save_logs(self, job_id: Union[int, str], lines: list[str]) -> None:
        """
        Overwrite the build log of deployment ``job_id``.

        Raises
        ------
        LogPersistenceError
            The database rejected the update or was unreachable.
        """
        stmt = (
            update(self._table)
            .where(self._table.c[self.id_column] == job_id)
            .values({self.log_column: "\n".join(lines)})
        )
        try:
            with self.engine.begin() as conn:
                result = conn.execute(stmt)
        except SQLAlchemyError as e:
            raise LogPersistenceError(f"Failed to store logs for job {job_id}: {e}") from e

        if result.rowcount == 0:
            logger.warning("No deployment row matched job %s; logs not stored", job_id)
        else:
            logger.info("Stored %d log lines for job %s", len(lines), job_id)


def default_log_store() -> Optional[DeploymentLogStore]:
    """Store bound to the shared engine, or None when persistence is disabled."""
    engine = get_db_engine()
    return DeploymentLogStore(engine) if engine is not None else None
