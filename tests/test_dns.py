"""
Tests for DNS record sets and the Route53 writer.
"""

from unittest.mock import MagicMock

import pytest

from region_rollout.config import HealthCheckConfig
from region_rollout.failover.dns import DNSRecord, DNSRecordSet, Route53RecordWriter
from region_rollout.failover.health import Endpoint, EndpointRole


DOMAIN = "ingress.iot-dev.example.com"


@pytest.fixture
def endpoints():
    return [
        Endpoint("dev", "eu-west-1", "eu-west-1.iot-dev.example.com", EndpointRole.PRIMARY),
        Endpoint("dev", "eu-central-1", "eu-central-1.iot-dev.example.com", EndpointRole.SECONDARY),
        Endpoint("dev", "us-east-1", "us-east-1.iot-dev.example.com", EndpointRole.SECONDARY),
    ]


@pytest.fixture
def health_check_ids():
    return {"dev-eu-west-1": "hc-eu", "dev-eu-central-1": "hc-central", "dev-us-east-1": "hc-us"}


@pytest.fixture
def route53():
    client = MagicMock()
    client.change_resource_record_sets.return_value = {"ChangeInfo": {"Id": "/change/C1", "Status": "PENDING"}}
    return client


# ── DNSRecordSet Tests ────────────────────────────────────────────────────────

class TestDNSRecordSet:

    def test_active_endpoint_is_the_only_primary(self, endpoints, health_check_ids):
        record_set = DNSRecordSet.build(DOMAIN, endpoints, "dev-eu-west-1", health_check_ids)

        assert record_set.primary.set_identifier == "dev-eu-west-1-endpoint"
        assert record_set.primary.health_check_id == "hc-eu"
        assert [r.set_identifier for r in record_set.secondaries] == [
            "dev-eu-central-1-endpoint", "dev-us-east-1-endpoint",
        ]

    def test_failover_promotes_secondary(self, endpoints, health_check_ids):
        record_set = DNSRecordSet.build(DOMAIN, endpoints, "dev-us-east-1", health_check_ids)

        assert record_set.primary.value == "us-east-1.iot-dev.example.com"
        assert record_set.secondaries[0].set_identifier == "dev-eu-west-1-endpoint"

    def test_published_records(self, endpoints, health_check_ids):
        record_set = DNSRecordSet.build(DOMAIN, endpoints, "dev-eu-west-1", health_check_ids)
        published = record_set.published_records()

        assert [r.failover for r in published] == [EndpointRole.PRIMARY, EndpointRole.SECONDARY]

    def test_exactly_one_primary_enforced(self):
        record = DNSRecord(DOMAIN, "a", "a.example.com", EndpointRole.SECONDARY)
        with pytest.raises(ValueError):
            DNSRecordSet(DOMAIN, (record,))

    def test_to_route53(self):
        record = DNSRecord(DOMAIN, "dev-eu-west-1-endpoint", "eu.example.com", EndpointRole.PRIMARY, "hc-1")
        assert record.to_route53() == {
            "Name": DOMAIN,
            "Type": "CNAME",
            "TTL": 60,
            "ResourceRecords": [{"Value": "eu.example.com"}],
            "SetIdentifier": "dev-eu-west-1-endpoint",
            "Failover": "PRIMARY",
            "HealthCheckId": "hc-1",
        }


# ── Route53RecordWriter Tests ─────────────────────────────────────────────────

class TestRoute53RecordWriter:

    @pytest.mark.asyncio
    async def test_publish_upserts_in_one_batch(self, route53, endpoints, health_check_ids):
        writer = Route53RecordWriter(route53=route53)
        record_set = DNSRecordSet.build(DOMAIN, endpoints, "dev-eu-west-1", health_check_ids)

        change_id = await writer.publish("Z123", record_set)

        assert change_id == "/change/C1"
        kwargs = route53.change_resource_record_sets.call_args.kwargs
        assert kwargs["HostedZoneId"] == "Z123"
        changes = kwargs["ChangeBatch"]["Changes"]
        assert [c["Action"] for c in changes] == ["UPSERT", "UPSERT"]
        assert changes[0]["ResourceRecordSet"]["Failover"] == "PRIMARY"
        assert writer.update_history[-1]["primary"] == "dev-eu-west-1-endpoint"

    @pytest.mark.asyncio
    async def test_update_history_is_bounded(self, route53, endpoints, health_check_ids):
        writer = Route53RecordWriter(route53=route53, history_size=2)

        for active in ("dev-eu-west-1", "dev-eu-central-1", "dev-us-east-1"):
            await writer.publish("Z123", DNSRecordSet.build(DOMAIN, endpoints, active, health_check_ids))

        assert [h["primary"] for h in writer.update_history] == [
            "dev-eu-central-1-endpoint", "dev-us-east-1-endpoint",
        ]

    @pytest.mark.asyncio
    async def test_publish_deletes_records_no_longer_published(self, route53, endpoints, health_check_ids):
        writer = Route53RecordWriter(route53=route53)
        before = DNSRecordSet.build(DOMAIN, endpoints, "dev-eu-west-1", health_check_ids)
        after = DNSRecordSet.build(DOMAIN, endpoints, "dev-us-east-1", health_check_ids)

        await writer.publish("Z123", after, previous=before)

        changes = route53.change_resource_record_sets.call_args.kwargs["ChangeBatch"]["Changes"]
        deleted = [c["ResourceRecordSet"]["SetIdentifier"] for c in changes if c["Action"] == "DELETE"]
        upserted = {
            c["ResourceRecordSet"]["SetIdentifier"]: c["ResourceRecordSet"]["Failover"]
            for c in changes if c["Action"] == "UPSERT"
        }
        assert deleted == ["dev-eu-central-1-endpoint"]
        assert upserted == {"dev-us-east-1-endpoint": "PRIMARY", "dev-eu-west-1-endpoint": "SECONDARY"}
        assert changes[0]["Action"] == "DELETE"

    @pytest.mark.asyncio
    async def test_create_health_check(self, route53, endpoints):
        route53.create_health_check.return_value = {"HealthCheck": {"Id": "hc-123"}}
        writer = Route53RecordWriter(route53=route53)

        health_check_id = await writer.create_health_check(endpoints[0], HealthCheckConfig())

        assert health_check_id == "hc-123"
        kwargs = route53.create_health_check.call_args.kwargs
        assert kwargs["HealthCheckConfig"] == {
            "Type": "HTTPS",
            "ResourcePath": "/",
            "FullyQualifiedDomainName": "eu-west-1.iot-dev.example.com",
            "Port": 443,
            "RequestInterval": 30,
            "FailureThreshold": 3,
        }
        assert kwargs["CallerReference"].startswith("dev-eu-west-1-endpoint")

    @pytest.mark.asyncio
    async def test_wait_for_change(self, route53):
        route53.get_change.return_value = {"ChangeInfo": {"Status": "INSYNC"}}
        writer = Route53RecordWriter(route53=route53)

        assert await writer.wait_for_change("/change/C1") is True

    @pytest.mark.asyncio
    async def test_get_current_records(self, route53):
        route53.list_resource_record_sets.return_value = {
            "ResourceRecordSets": [
                {
                    "Name": DOMAIN + ".", "Type": "CNAME", "SetIdentifier": "dev-eu-west-1-endpoint",
                    "Failover": "PRIMARY", "HealthCheckId": "hc-eu",
                    "ResourceRecords": [{"Value": "eu-west-1.iot-dev.example.com"}],
                },
                {"Name": "other.iot-dev.example.com.", "Type": "A", "ResourceRecords": []},
            ]
        }
        writer = Route53RecordWriter(route53=route53)

        records = await writer.get_current_records("Z123", DOMAIN)

        assert len(records) == 1
        assert records[0]["failover"] == "PRIMARY"
        assert records[0]["values"] == ["eu-west-1.iot-dev.example.com"]
