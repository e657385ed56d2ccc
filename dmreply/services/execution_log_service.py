import json
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from dmreply.models.execution_log import ExecutionLog


class ExecutionLogService:
    """Append-only audit trail stored in the execution_logs table"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def log(self, db: Session, message: str, data: Optional[Any] = None):
        """
        Append one entry and commit it.

        Audit failures are logged and swallowed; they must never break the
        operation being audited. Call after the caller has committed or
        rolled back its own work, since this commits the session.
        """
        text = message
        if data is not None:
            text = f"{message}: {json.dumps(data, ensure_ascii=False, indent=2, default=str)}"

        try:
            db.add(ExecutionLog(message=text))
            db.commit()
        except Exception as e:
            db.rollback()
            self.logger.error(f"log: Failure - {e}")
