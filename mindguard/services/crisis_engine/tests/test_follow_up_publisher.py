"""Tests for the follow-up event publisher."""
import json
import pytest
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

from mindguard.shared.models import RiskLevel
from mindguard.shared.utils import configure_pii_salt
from mindguard.services.crisis_engine.escalation import EscalationEngine
from mindguard.services.crisis_engine.follow_up_publisher import FollowUpEvent, FollowUpPublisher


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


@pytest.fixture
def event():
    response = EscalationEngine().fallback_response()
    return FollowUpEvent.from_response(response, "abc123hash", "session-1")


class TestFollowUpEvent:

    def test_from_response(self, event):
        assert event.event_id.startswith("evt_")
        assert event.risk_level == RiskLevel.MEDIUM.value
        assert event.crisis_detected is True
        assert event.indicators == ("Analysis unavailable - manual review required",)

    def test_payload_shape(self, event):
        payload = event.to_kinesis_payload()

        assert payload["event_type"] == "safety.follow_up.required"
        assert payload["source"] == "mindguard-safety-monitor"
        assert payload["data"]["user_id_hash"] == "abc123hash"
        assert payload["data"]["session_id"] == "session-1"
        json.dumps(payload)


class TestFollowUpPublisher:

    def test_publishes_with_user_partition_key(self, event):
        kinesis = MagicMock()
        kinesis.put_record.return_value = {"ShardId": "shard-0", "SequenceNumber": "1"}
        publisher = FollowUpPublisher(stream_name="follow-ups", kinesis_client=kinesis)

        assert publisher.publish(event) is True

        kwargs = kinesis.put_record.call_args.kwargs
        assert kwargs["StreamName"] == "follow-ups"
        assert kwargs["PartitionKey"] == "abc123hash"
        assert json.loads(kwargs["Data"])["event_id"] == event.event_id

    def test_disabled_publisher_skips(self, event):
        kinesis = MagicMock()
        publisher = FollowUpPublisher(enabled=False, kinesis_client=kinesis)

        assert publisher.publish(event) is False
        kinesis.put_record.assert_not_called()

    def test_client_error_is_reported_not_raised(self, event):
        kinesis = MagicMock()
        kinesis.put_record.side_effect = ClientError(
            {"Error": {"Code": "ProvisionedThroughputExceededException", "Message": "slow down"}},
            "PutRecord",
        )
        publisher = FollowUpPublisher(kinesis_client=kinesis)

        assert publisher.publish(event) is False

    def test_from_env_disabled_without_stream(self, monkeypatch):
        monkeypatch.delenv("KINESIS_STREAM_NAME", raising=False)

        assert FollowUpPublisher.from_env().enabled is False

    def test_from_env_enabled_with_stream(self, monkeypatch):
        monkeypatch.setenv("KINESIS_STREAM_NAME", "counselor-follow-ups")

        publisher = FollowUpPublisher.from_env()

        assert publisher.enabled is True
        assert publisher.stream_name == "counselor-follow-ups"
