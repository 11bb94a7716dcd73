"""Follow-up event publisher.

Publishes follow-up-required escalation outcomes to a Kinesis stream so
counselor workflows can pick them up without a direct service call.

Failure Handling:
    - Publishing failure never blocks or changes the crisis response
    - Failures are logged at CRITICAL level with the payload for manual processing
"""
import json
import logging
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from mindguard.shared.models import CrisisResponse
from mindguard.shared.utils import utc_now

logger = logging.getLogger(__name__)

DEFAULT_STREAM_NAME = "mindguard-follow-up-events"


@dataclass(frozen=True)
class FollowUpEvent:
    """Escalation outcome that needs a human follow-up."""
    event_id: str
    user_id_hash: str
    session_id: str
    risk_level: str
    immediate: bool
    crisis_detected: bool
    indicators: Tuple[str, ...] = ()
    event_type: str = "safety.follow_up.required"
    timestamp: datetime = field(default_factory=utc_now)

    @classmethod
    def from_response(
        cls,
        response: CrisisResponse,
        user_id_hash: str,
        session_id: str,
    ) -> "FollowUpEvent":
        return cls(
            event_id=f"evt_{uuid.uuid4().hex[:12]}",
            user_id_hash=user_id_hash,
            session_id=session_id,
            risk_level=response.risk_level.value,
            immediate=response.immediate,
            crisis_detected=response.crisis_detected,
            indicators=response.indicators,
        )

    def to_kinesis_payload(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "timestamp": self.timestamp.isoformat(),
            "source": "mindguard-safety-monitor",
            "data": {
                "user_id_hash": self.user_id_hash,
                "session_id": self.session_id,
                "risk_level": self.risk_level,
                "immediate": self.immediate,
                "crisis_detected": self.crisis_detected,
                "indicators": list(self.indicators),
            },
        }


class FollowUpPublisher:
    """Publishes follow-up events to Kinesis; never raises on delivery failure."""

    def __init__(
        self,
        stream_name: str = DEFAULT_STREAM_NAME,
        enabled: bool = True,
        region: Optional[str] = None,
        kinesis_client: Any = None,
    ):
        self.stream_name = stream_name
        self.enabled = enabled
        self.region = region or os.getenv("AWS_REGION", "us-east-1")
        self._kinesis_client = kinesis_client

        logger.info(
            "FOLLOW_UP_PUBLISHER_INITIALIZED",
            extra={"stream_name": stream_name, "enabled": enabled, "region": self.region}
        )

    @classmethod
    def from_env(cls) -> "FollowUpPublisher":
        """Enabled only when KINESIS_STREAM_NAME is set."""
        stream_name = os.getenv("KINESIS_STREAM_NAME", "")
        return cls(
            stream_name=stream_name or DEFAULT_STREAM_NAME,
            enabled=bool(stream_name),
            region=os.getenv("AWS_REGION"),
        )

    @property
    def kinesis_client(self):
        if self._kinesis_client is None and self.enabled:
            try:
                self._kinesis_client = boto3.client("kinesis", region_name=self.region)
            except BotoCoreError as e:
                logger.error("KINESIS_CLIENT_INIT_FAILED", extra={"error": str(e)})
        return self._kinesis_client

    def publish(self, event: FollowUpEvent) -> bool:
        """Publish one event.

        Returns:
            True if the stream accepted the record, False otherwise
        """
        if not self.enabled:
            logger.info(
                "FOLLOW_UP_PUBLISH_SKIPPED",
                extra={"event_id": event.event_id, "reason": "publishing_disabled"}
            )
            return False

        payload = event.to_kinesis_payload()
        client = self.kinesis_client
        if client is None:
            logger.critical(
                "FOLLOW_UP_EVENT_FALLBACK_LOG",
                extra={
                    "event_id": event.event_id,
                    "payload": json.dumps(payload),
                    "reason": "kinesis_client_unavailable",
                    "action": "MANUAL_PROCESSING_REQUIRED",
                }
            )
            return False

        try:
            response = client.put_record(
                StreamName=self.stream_name,
                Data=json.dumps(payload),
                PartitionKey=event.user_id_hash,  # Same user, same shard
            )
        except (BotoCoreError, ClientError) as e:
            logger.critical(
                "FOLLOW_UP_EVENT_PUBLISH_FAILED",
                extra={
                    "event_id": event.event_id,
                    "user_id_hash": event.user_id_hash,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "action": "MANUAL_REVIEW_REQUIRED",
                    "payload": json.dumps(payload),
                }
            )
            return False

        logger.info(
            "FOLLOW_UP_EVENT_PUBLISHED",
            extra={
                "event_id": event.event_id,
                "user_id_hash": event.user_id_hash,
                "risk_level": event.risk_level,
                "shard_id": response.get("ShardId"),
                "sequence_number": response.get("SequenceNumber"),
            }
        )
        return True
