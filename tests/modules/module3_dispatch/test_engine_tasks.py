"""Tests for the Celery tasks and the event relay (Module 3)."""

from unittest.mock import Mock, patch

from celery.exceptions import Retry

from src.bootstrap import build_event_publisher
from src.config.constants import CourierStatus, DeliveryStatus
from src.domain.events import DeliveryFailedEvent
from src.modules.module3_dispatch import (
    CeleryEventPublisher,
    cancel_dispatch,
    create_delivery,
    create_service_area,
    dispatch_delivery,
    evict_stale_positions,
    redispatch_failed_deliveries,
    register_courier,
    relay_domain_event,
    report_courier_location,
    retry_pending_compensations,
    set_courier_shift,
)
from src.modules.module3_dispatch.tasks import _retry
from src.utils.context import get_correlation_id, set_correlation_id, clear_correlation_id

from helpers import OTHER_TENANT, PARIS_CENTER, TENANT, make_settings


class TestDispatchTasks:
    """Test suite for the dispatch tasks run eagerly."""

    def test_dispatch_delivery_task(self, world):
        """Test a successful dispatch through the task."""
        courier = world.add_courier(48.8575, 2.3505)
        delivery = world.new_delivery()

        result = dispatch_delivery.apply(
            kwargs={"delivery_id": delivery.id, "tenant_id": TENANT, "correlation_id": "corr-1"}
        ).get()

        assert result["status"] == "dispatched"
        assert result["courier_id"] == courier.id
        assert result["delivery_status"] == DeliveryStatus.ASSIGNED.value
        assert result["degraded_route"] is False
        assert result["estimated_arrival"] is not None

    def test_correlation_id_cleared_after_task(self, world):
        """Test that the task does not leak its correlation id."""
        delivery = world.new_delivery()

        dispatch_delivery.apply(
            kwargs={"delivery_id": delivery.id, "tenant_id": TENANT, "correlation_id": "corr-2"}
        ).get()

        assert get_correlation_id() is None

    def test_dispatch_domain_error_is_final(self, world):
        """Test that a dispatch without courier returns a failure payload."""
        delivery = world.new_delivery()

        result = dispatch_delivery.apply(kwargs={"delivery_id": delivery.id, "tenant_id": TENANT}).get()

        assert result["status"] == "failed"
        assert result["error"] == "DeliveryAssignmentException"
        assert world.engine.get_delivery(delivery.id, TENANT).status == DeliveryStatus.FAILED

    def test_cancel_dispatch_task(self, world):
        """Test cancellation through the task."""
        delivery = world.new_delivery()

        result = cancel_dispatch.apply(
            kwargs={"delivery_id": delivery.id, "tenant_id": TENANT, "reason": "duplicate order"}
        ).get()

        assert result["status"] == "cancelled"
        assert result["delivery_status"] == DeliveryStatus.CANCELLED.value
        assert world.engine.get_delivery(delivery.id, TENANT).status == DeliveryStatus.CANCELLED

    def test_cancel_unknown_delivery(self, world):
        """Test that an unknown delivery is reported, not retried."""
        result = cancel_dispatch.apply(kwargs={"delivery_id": "missing", "tenant_id": TENANT}).get()

        assert result["status"] == "failed"
        assert result["error"] == "DeliveryNotFoundException"


class TestIntakeTasks:
    """Test suite for creating areas, couriers and deliveries through tasks."""

    def setup_method(self):
        """Set up test fixtures."""
        self.city = {
            "name": "Paris",
            "country_code": "fr",
            "center": {"latitude": PARIS_CENTER.latitude, "longitude": PARIS_CENTER.longitude},
        }
        self.coordinates = [
            [48.80, 2.30], [48.80, 2.40], [48.90, 2.40], [48.90, 2.30],
        ]

    def test_create_service_area(self, world):
        """Test that a new tenant gets an active area covering its city."""
        result = create_service_area.apply(kwargs={
            "tenant_id": OTHER_TENANT, "city": self.city, "coordinates": self.coordinates,
        }).get()

        assert result["status"] == "created"
        assert result["area_square_meters"] > 0
        assert world.engine.service_areas.is_covered(OTHER_TENANT, PARIS_CENTER)

    def test_overlapping_service_area_rejected(self, world):
        """Test that an overlap with an active area is a failure payload."""
        result = create_service_area.apply(kwargs={
            "tenant_id": TENANT, "city": self.city, "coordinates": self.coordinates,
        }).get()

        assert result["status"] == "failed"
        assert result["error"] == "ServiceAreaConflictException"

    def test_invalid_boundary_rejected(self, world):
        """Test that a degenerate polygon is a failure payload."""
        result = create_service_area.apply(kwargs={
            "tenant_id": OTHER_TENANT, "city": self.city, "coordinates": [[48.8, 2.3], [48.9, 2.4]],
        }).get()

        assert result["status"] == "failed"

    def test_register_courier_online(self, world):
        """Test registering a courier who starts their shift immediately."""
        result = register_courier.apply(kwargs={
            "tenant_id": TENANT, "name": "Ines", "capacity": 2, "online": True,
        }).get()

        assert result["status"] == "registered"
        assert result["courier_status"] == CourierStatus.AVAILABLE.value
        assert world.courier(result["courier_id"]).capacity == 2

    def test_set_courier_shift(self, world):
        """Test ending and restarting a shift."""
        courier = world.add_courier(48.8575, 2.3505)

        ended = set_courier_shift.apply(kwargs={
            "courier_id": courier.id, "tenant_id": TENANT, "online": False,
        }).get()
        restarted = set_courier_shift.apply(kwargs={
            "courier_id": courier.id, "tenant_id": TENANT, "online": True,
        }).get()

        assert ended["courier_status"] == CourierStatus.OFFLINE.value
        assert restarted["courier_status"] == CourierStatus.AVAILABLE.value

    def test_set_shift_unknown_courier(self, world):
        """Test that an unknown courier is reported, not retried."""
        result = set_courier_shift.apply(kwargs={
            "courier_id": "missing", "tenant_id": TENANT, "online": True,
        }).get()

        assert result["status"] == "failed"
        assert result["error"] == "CourierNotFoundException"

    def test_create_then_dispatch(self, world):
        """Test the full intake path: the delivery created by one task is dispatched by the next."""
        courier = world.add_courier(48.8575, 2.3505)

        created = create_delivery.apply(kwargs={
            "tenant_id": TENANT,
            "origin": [48.8570, 2.3500],
            "destination": [48.8700, 2.3700],
            "order_id": "order-42",
        }).get()
        dispatched = dispatch_delivery.apply(kwargs={
            "delivery_id": created["delivery_id"], "tenant_id": TENANT,
        }).get()

        assert created["status"] == "created"
        assert created["delivery_status"] == DeliveryStatus.PENDING.value
        assert dispatched["status"] == "dispatched"
        assert dispatched["courier_id"] == courier.id

    def test_create_delivery_invalid_coordinates(self, world):
        """Test that an out-of-range origin is a failure payload."""
        result = create_delivery.apply(kwargs={
            "tenant_id": TENANT, "origin": [91.0, 2.35], "destination": [48.87, 2.37],
        }).get()

        assert result["status"] == "failed"


class TestTaskRetries:
    """Test suite for the retry policy of the tasks."""

    def test_unexpected_error_retried_once_with_backoff(self, world):
        """Test that an infrastructure error schedules exactly one retry."""
        delivery = world.new_delivery()
        error = RuntimeError("store unavailable")

        with patch.object(world.engine, "dispatch", side_effect=error), \
                patch.object(dispatch_delivery, "retry", return_value=Retry("again")) as retry:
            dispatch_delivery.apply(kwargs={"delivery_id": delivery.id, "tenant_id": TENANT})

        retry.assert_called_once_with(exc=error, countdown=1)

    def test_domain_error_not_retried(self, world):
        """Test that a domain error never schedules a retry."""
        with patch.object(dispatch_delivery, "retry") as retry:
            result = dispatch_delivery.apply(kwargs={"delivery_id": "missing", "tenant_id": TENANT}).get()

        assert result["error"] == "DeliveryNotFoundException"
        retry.assert_not_called()

    def test_backoff_grows_and_is_capped(self):
        """Test the retry countdown for successive attempts."""
        error = RuntimeError("broker down")
        countdowns = []
        for retries in (0, 3, 10):
            task = Mock()
            task.name = "dispatch_delivery"
            task.request.retries = retries
            _retry(task, error)
            countdowns.append(task.retry.call_args.kwargs["countdown"])

        assert countdowns == [1, 8, 60]

    def test_single_retry_policy(self):
        """Test that tasks carry no automatic retry on top of their own."""
        assert not getattr(dispatch_delivery, "autoretry_for", None)
        assert dispatch_delivery.max_retries == 3


class TestWorkerConfiguration:
    """Test suite for the worker command line."""

    def test_worker_runs_threads_on_every_queue(self):
        """Test that one threaded worker consumes every routed queue."""
        from main import worker_argv
        from src.modules.module3_dispatch.constants import TASK_QUEUES

        argv = worker_argv(concurrency=8)
        queues = argv[argv.index("-Q") + 1].split(",")

        assert "--pool=threads" in argv
        assert "--concurrency=8" in argv
        assert set(TASK_QUEUES.values()) <= set(queues)
        assert TASK_QUEUES["create_delivery"] == "intake"


class TestLocationTask:
    """Test suite for report_courier_location."""

    def test_report_applied(self, world):
        """Test a valid report."""
        courier = world.add_courier(48.8575, 2.3505)
        world.clock.advance(seconds=10)

        result = report_courier_location.apply(kwargs={
            "courier_id": courier.id,
            "latitude": 48.8580,
            "longitude": 2.3510,
            "timestamp": world.clock().isoformat(),
            "accuracy_m": 6.0,
        }).get()

        assert result["applied"] is True
        assert result["courier_id"] == courier.id
        assert world.engine.get_courier_location(courier.id).latitude == 48.8580

    def test_report_out_of_order(self, world):
        """Test that an older report is acknowledged but not applied."""
        courier = world.add_courier(48.8575, 2.3505)

        result = report_courier_location.apply(kwargs={
            "courier_id": courier.id,
            "latitude": 48.8,
            "longitude": 2.3,
            "timestamp": "2024-01-15T11:00:00+00:00",
        }).get()

        assert result["applied"] is False
        assert world.engine.get_courier_location(courier.id).latitude == 48.8575

    def test_invalid_coordinates_rejected(self, world):
        """Test that malformed reports are dropped with a failure payload."""
        result = report_courier_location.apply(kwargs={
            "courier_id": "c1", "latitude": 95.0, "longitude": 2.3,
        }).get()

        assert result["status"] == "failed"
        assert world.engine.get_courier_location("c1") is None


class TestSweepTasks:
    """Test suite for the periodic sweep tasks."""

    def test_evict_stale_positions(self, world):
        """Test the eviction sweep."""
        world.add_courier(48.8575, 2.3505)
        world.clock.advance(seconds=world.config.eviction_threshold_seconds + 1)

        assert evict_stale_positions.apply().get() == {"evicted": 1}

    def test_redispatch_failed_deliveries(self, world):
        """Test the re-dispatch sweep."""
        delivery = world.new_delivery()
        dispatch_delivery.apply(kwargs={"delivery_id": delivery.id, "tenant_id": TENANT}).get()
        world.add_courier(48.8575, 2.3505)

        result = redispatch_failed_deliveries.apply().get()

        assert result == {"redispatched": 1, "failed": 0, "skipped": 0}

    def test_retry_pending_compensations(self, world):
        """Test the compensation sweep with nothing queued."""
        assert retry_pending_compensations.apply().get() == {"confirmed": 0, "pending": 0}


class TestEventRelay:
    """Test suite for relaying events through Celery."""

    def setup_method(self):
        """Set up test fixtures."""
        self.event = DeliveryFailedEvent(tenant_id=TENANT, delivery_id="d1", reason="no courier")

    def teardown_method(self):
        clear_correlation_id()

    def test_publisher_enqueues_payload(self):
        """Test that events are sent to the events queue as JSON payloads."""
        set_correlation_id("corr-3")

        with patch.object(relay_domain_event, "apply_async") as apply_async:
            CeleryEventPublisher().publish(self.event)

        apply_async.assert_called_once()
        payload = apply_async.call_args.kwargs["args"][0]
        assert apply_async.call_args.kwargs["queue"] == "events"
        assert payload["event_type"] == "DeliveryFailed"
        assert payload["delivery_id"] == "d1"
        assert payload["correlation_id"] == "corr-3"

    def test_relay_task(self):
        """Test the relay task itself."""
        result = relay_domain_event.apply(args=[self.event.to_payload()]).get()

        assert result == {"event_id": self.event.event_id, "relayed": True}

    def test_relay_enabled_by_settings(self):
        """Test that the relay joins the publishers when enabled."""
        publisher = build_event_publisher(make_settings(relay_events_via_celery=True))

        with patch.object(relay_domain_event, "apply_async") as apply_async:
            publisher.publish(self.event)

        apply_async.assert_called_once()

    def test_relay_disabled_by_default(self):
        """Test that events are only logged by default."""
        publisher = build_event_publisher(make_settings())

        with patch.object(relay_domain_event, "apply_async") as apply_async:
            publisher.publish(self.event)

        apply_async.assert_not_called()
