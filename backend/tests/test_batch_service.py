"""
Batch activation tests against the SQL adapter.

Covers the lookup cascade, ownership/status rules, exactly-once crediting
and the partial-failure (stats) path.
"""

import uuid

import pytest

from trashdrop import signals
from trashdrop.adapters import BatchRecord, GatewayError, QueryResult, SqlBatchGateway
from trashdrop.errors import (
    BATCH_INACTIVE,
    BATCH_INVALID,
    BATCH_NOT_FOUND,
    BATCH_NOT_OWNED,
)
from trashdrop.extensions import db
from trashdrop.models import Batch, BagScan, UserStats
from trashdrop.services import batch_service


def _stats(user_id):
    db.session.expire_all()
    return db.session.get(UserStats, user_id)


def _status(batch_id):
    db.session.expire_all()
    return db.session.get(Batch, batch_id).status


class StatsDownGateway(SqlBatchGateway):
    def credit_user_stats(self, user_id, batch_id, bag_count):
        return QueryResult(error=GatewayError("stats table unavailable", code="DB_ERROR"))


class LookupDownGateway(SqlBatchGateway):
    def find_batches_by_code(self, code, match="exact"):
        return QueryResult(error=GatewayError("connection refused", code="NETWORK_ERROR"))


class FakeVerifier:
    def __init__(self, record=None):
        self.record = record
        self.calls = []

    def check(self, *, batch_id=None, batch_number=None):
        self.calls.append((batch_id, batch_number))
        return QueryResult(data=self.record)


@pytest.fixture
def gateway(db_session):
    return SqlBatchGateway()


class TestResolveBatch:
    def test_by_id(self, gateway, make_batch):
        batch = make_batch("BATCH-ID1")
        res = batch_service.resolve_batch(gateway, batch.id)
        assert res.found
        assert res.matched_by == batch_service.MATCHED_BY_ID

    def test_exact_code(self, gateway, make_batch):
        make_batch("BATCH-EXACT")
        res = batch_service.resolve_batch(gateway, "BATCH-EXACT")
        assert res.matched_by == batch_service.MATCHED_BY_CODE

    def test_case_insensitive_code(self, gateway, make_batch):
        make_batch("BATCH-MiXeD")
        res = batch_service.resolve_batch(gateway, "batch-mixed")
        assert res.matched_by == batch_service.MATCHED_BY_CODE_ILIKE
        assert res.batch.code == "BATCH-MiXeD"

    def test_contains_code(self, gateway, make_batch):
        make_batch("TD-BATCH-0042-2024")
        res = batch_service.resolve_batch(gateway, "BATCH-0042")
        assert res.matched_by == batch_service.MATCHED_BY_CODE_CONTAINS

    def test_not_found(self, gateway, make_batch):
        make_batch("BATCH-OTHER")
        res = batch_service.resolve_batch(gateway, "BATCH-NOPE")
        assert not res.found
        assert res.matched_by == batch_service.NOT_FOUND
        assert res.error is None

    def test_remote_verifier_fallback(self, gateway):
        record = BatchRecord(id=str(uuid.uuid4()), code="BATCH-REMOTE", status="active")
        verifier = FakeVerifier(record)
        res = batch_service.resolve_batch(gateway, "BATCH-REMOTE", verifier)
        assert res.matched_by == batch_service.MATCHED_BY_REMOTE
        assert verifier.calls == [(None, "BATCH-REMOTE")]

    def test_backend_error_is_kept_when_nothing_matched(self, db_session):
        res = batch_service.resolve_batch(LookupDownGateway(), "BATCH-X")
        assert not res.found
        assert res.error.code == "NETWORK_ERROR"


class TestActivateBatch:
    def test_activates_and_credits_bag_rows(self, gateway, make_batch):
        batch = make_batch("BATCH-A1", bag_count=99, bags=4)

        result = batch_service.activate_batch_for_user(gateway, "BATCH-A1", "user-1")

        assert result.ok
        assert result.data["activated"] is True
        assert result.data["bags_added"] == 4
        assert result.data["status"] == "used"
        assert _status(batch.id) == "used"
        stats = _stats("user-1")
        assert stats.available_bags == 4
        assert stats.total_batches == 1
        assert stats.scanned_batch_ids == [batch.id]

    def test_falls_back_to_bag_count_without_rows(self, gateway, make_batch):
        make_batch("BATCH-A2", bag_count=10)
        result = batch_service.activate_batch_for_user(gateway, "BATCH-A2", "user-1")
        assert result.data["bags_added"] == 10
        assert _stats("user-1").available_bags == 10

    def test_deep_link_identifier(self, gateway, make_batch):
        make_batch("BATCH-LINK", bag_count=2)
        result = batch_service.activate_batch_for_user(
            gateway, "trashdrop://scan?batch_id=BATCH-LINK", "user-1"
        )
        assert result.ok
        assert result.data["batch_code"] == "BATCH-LINK"

    def test_second_activation_is_idempotent(self, gateway, make_batch):
        make_batch("BATCH-TWICE", bag_count=5)

        first = batch_service.activate_batch_for_user(gateway, "BATCH-TWICE", "user-1")
        second = batch_service.activate_batch_for_user(gateway, "BATCH-TWICE", "user-1")

        assert first.data["bags_added"] == 5
        assert second.ok
        assert second.data["already_activated"] is True
        assert second.data["bags_added"] == 0
        stats = _stats("user-1")
        assert stats.available_bags == 5
        assert stats.total_batches == 1

    def test_credit_is_exactly_once_even_if_row_reset(self, gateway, make_batch):
        batch = make_batch("BATCH-RESET", bag_count=3)
        batch_service.activate_batch_for_user(gateway, "BATCH-RESET", "user-1")

        # Someone flips the row back to active; the stats ledger still says credited
        row = db.session.get(Batch, batch.id)
        row.status = "active"
        db.session.commit()

        result = batch_service.activate_batch_for_user(gateway, "BATCH-RESET", "user-1")
        assert result.ok
        assert result.data["bags_added"] == 0
        assert result.warnings
        assert _stats("user-1").available_bags == 3

    def test_owned_by_someone_else(self, gateway, make_batch):
        batch = make_batch("BATCH-OWNED", owner_id="user-2", bag_count=3)
        result = batch_service.activate_batch_for_user(gateway, "BATCH-OWNED", "user-1")
        assert result.error.code == BATCH_NOT_OWNED
        assert _status(batch.id) == "active"
        assert _stats("user-1") is None

    def test_owner_can_activate(self, gateway, make_batch):
        make_batch("BATCH-MINE", owner_id="user-1", bag_count=1)
        result = batch_service.activate_batch_for_user(gateway, "BATCH-MINE", "user-1")
        assert result.ok

    def test_inactive_status(self, gateway, make_batch):
        make_batch("BATCH-VOID", status="expired")
        result = batch_service.activate_batch_for_user(gateway, "BATCH-VOID", "user-1")
        assert result.error.code == BATCH_INACTIVE
        assert result.error.is_permanent

    def test_not_found(self, gateway):
        result = batch_service.activate_batch_for_user(gateway, "BATCH-MISSING", "user-1")
        assert result.error.code == BATCH_NOT_FOUND
        assert result.data is None

    def test_invalid_input(self, gateway):
        assert batch_service.activate_batch_for_user(gateway, "  ", "user-1").error.code == BATCH_INVALID
        assert batch_service.activate_batch_for_user(gateway, "BATCH-1", "").error.code == BATCH_INVALID

    def test_lookup_outage_is_not_reported_as_missing(self, db_session):
        result = batch_service.activate_batch_for_user(LookupDownGateway(), "BATCH-X", "user-1")
        assert result.error.code == "NETWORK_ERROR"
        assert not result.error.is_permanent

    def test_stats_failure_is_a_warning(self, db_session, make_batch):
        batch = make_batch("BATCH-PARTIAL", bag_count=6)

        result = batch_service.activate_batch_for_user(StatsDownGateway(), "BATCH-PARTIAL", "user-1")

        assert result.ok
        assert result.data["activated"] is True
        assert result.data["stats"] is None
        assert any("bag count was not updated" in w for w in result.warnings)
        assert _status(batch.id) == "used"

    def test_bags_updated_signal(self, gateway, make_batch):
        make_batch("BATCH-SIG", bag_count=7)
        received = []

        def receiver(sender, **kwargs):
            received.append(kwargs)

        signals.bags_updated.connect(receiver)
        try:
            batch_service.activate_batch_for_user(gateway, "BATCH-SIG", "user-1")
            batch_service.activate_batch_for_user(gateway, "BATCH-SIG", "user-1")
        finally:
            signals.bags_updated.disconnect(receiver)

        assert received == [{"user_id": "user-1", "delta_bags": 7, "source": "batch-scan"}]

    def test_failing_receiver_does_not_break_activation(self, gateway, make_batch):
        make_batch("BATCH-RCV", bag_count=1)

        def broken(sender, **kwargs):
            raise RuntimeError("dashboard down")

        signals.bags_updated.connect(broken)
        try:
            result = batch_service.activate_batch_for_user(gateway, "BATCH-RCV", "user-1")
        finally:
            signals.bags_updated.disconnect(broken)
        assert result.ok


class TestDetailsAndStats:
    def test_batch_details(self, gateway, make_batch):
        batch = make_batch("BATCH-D", bags=2)
        result = batch_service.get_batch_details(gateway, "batch-d")
        assert result.ok
        assert result.data["id"] == batch.id
        assert result.data["total_bags"] == 2
        assert len(result.data["bags"]) == 2

    def test_user_stats_default(self, gateway):
        result = batch_service.get_user_stats(gateway, "nobody")
        assert result.data["available_bags"] == 0
        assert result.data["scanned_batch_ids"] == []


class TestBagScans:
    def test_record_and_history(self, gateway, make_batch):
        batch = make_batch("BATCH-BAGS", bags=1)
        bag_id = batch.bags[0].id

        result = batch_service.record_bag_scan(
            gateway, bag_id, "collector-1",
            location={"text": "Depot 3", "coordinates": [5.6, -0.2]},
            notes="picked up",
        )
        assert result.ok
        assert result.data["location"] == "Depot 3"
        assert result.data["coordinates"] == [5.6, -0.2]

        history = batch_service.get_bag_scan_history(gateway, bag_id)
        assert [s["scanned_by"] for s in history.data] == ["collector-1"]
        assert db.session.query(BagScan).count() == 1

    def test_unknown_bag(self, gateway):
        result = batch_service.record_bag_scan(gateway, "no-such-bag", "collector-1")
        assert result.error.code == BATCH_NOT_FOUND

    def test_missing_scanner(self, gateway):
        assert batch_service.record_bag_scan(gateway, "bag", "").error.code == BATCH_INVALID
