"""oracle.system_alerts writer."""

from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bitredict.models.domain import SystemAlert

logger = structlog.get_logger(__name__)


class AlertStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def record(
        self,
        alert_type: str,
        message: str,
        details: dict[str, Any] | None = None,
        severity: str = "error",
    ) -> None:
        logger.error("system_alert", alert_type=alert_type, message=message, details=details)
        async with self.session_factory() as session:
            session.add(
                SystemAlert(
                    alert_type=alert_type,
                    severity=severity,
                    message=message,
                    details=details,
                )
            )
            await session.commit()
