"""
Alert Manager

Operator notifications for rollouts and failover, sent to Prometheus Alertmanager.
"""

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, List, Optional

import aiohttp

logger = logging.getLogger(__name__)


@dataclass
class Alert:
    """Alert definition"""
    alert_id: str
    name: str
    severity: str  # critical, warning, info
    region: Optional[str]
    message: str
    triggered_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    labels: Dict[str, str] = field(default_factory=dict)

    def to_payload(self) -> Dict:
        return {
            "labels": {
                "alertname": self.name,
                "severity": self.severity,
                "region": self.region or "global",
                **self.labels
            },
            "annotations": {
                "summary": self.message
            },
            "startsAt": self.triggered_at + "Z",
        }


class AlertManager:
    """
    Rollout and failover alert sender

    Without an Alertmanager URL alerts are only logged. Delivery problems are
    logged and never propagate into the rollout or failover paths.
    """

    def __init__(
        self,
        alertmanager_url: Optional[str] = None,
        timeout_seconds: int = 10,
        history_size: int = 500,
    ):
        self.alertmanager_url = alertmanager_url.rstrip('/') if alertmanager_url else None
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.alert_history: Deque[Alert] = deque(maxlen=history_size)

    async def notify(
        self,
        name: str,
        severity: str,
        region: Optional[str],
        message: str,
        labels: Optional[Dict[str, str]] = None,
    ) -> Alert:
        alert = Alert(
            alert_id=uuid.uuid4().hex,
            name=name,
            severity=severity,
            region=region,
            message=message,
            labels=dict(labels or {}),
        )
        await self.send_alert(alert)
        return alert

    async def send_alert(self, alert: Alert):
        """Send alert notification"""
        logger.warning(f"ALERT [{alert.severity}]: {alert.name} - {alert.message}")
        self.alert_history.append(alert)

        if not self.alertmanager_url:
            return

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                url = f"{self.alertmanager_url}/api/v2/alerts"
                async with session.post(url, json=[alert.to_payload()]) as response:
                    if response.status == 200:
                        logger.info(f"Alert sent successfully: {alert.name}")
                    else:
                        logger.error(f"Failed to send alert {alert.name}: HTTP {response.status}")

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Error sending alert {alert.name}: {e}")

    def get_alerts(self, name: Optional[str] = None) -> List[Alert]:
        if name:
            return [a for a in self.alert_history if a.name == name]
        return list(self.alert_history)
