import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from encounter_tracker.application.services.event_bus import EventBus
from encounter_tracker.application.services.notifications import NotificationOutbox, register_notification_handlers
from encounter_tracker.domain.events import PasswordResetRequested, TurnAdvanced, UserRegistered


class EventBusTests(unittest.TestCase):
    def test_publish_notifies_handlers_in_subscription_order(self) -> None:
        bus = EventBus()
        seen: list[str] = []

        bus.subscribe(TurnAdvanced, lambda evt: seen.append("first"))
        bus.subscribe(TurnAdvanced, lambda evt: seen.append("second"))

        bus.publish(TurnAdvanced(encounter_id="enc-1", round_number=1, turn_index=0, participant_id="gob"))

        self.assertEqual(["first", "second"], seen)

    def test_priority_runs_lower_values_first(self) -> None:
        bus = EventBus()
        seen: list[str] = []

        bus.subscribe(TurnAdvanced, lambda evt: seen.append("late"), priority=200)
        bus.subscribe(TurnAdvanced, lambda evt: seen.append("early"), priority=10)

        bus.publish(TurnAdvanced(encounter_id="enc-1", round_number=1, turn_index=0, participant_id=None))

        self.assertEqual(["early", "late"], seen)

    def test_publish_filters_handlers_by_event_class(self) -> None:
        bus = EventBus()
        seen: list[object] = []
        bus.subscribe(UserRegistered, seen.append)

        bus.publish(TurnAdvanced(encounter_id="enc-1", round_number=1, turn_index=0, participant_id=None))

        self.assertEqual([], seen)

    def test_failing_handler_is_isolated(self) -> None:
        bus = EventBus()
        seen: list[str] = []

        def explode(evt) -> None:
            raise RuntimeError("handler broke")

        bus.subscribe(TurnAdvanced, explode)
        bus.subscribe(TurnAdvanced, lambda evt: seen.append("after"))

        with self.assertLogs("encounter_tracker.application.services.event_bus", level="ERROR"):
            bus.publish(TurnAdvanced(encounter_id="enc-1", round_number=1, turn_index=0, participant_id=None))

        self.assertEqual(["after"], seen)
        self.assertEqual(1, len(bus.last_publish_errors()))

    def test_unsubscribe(self) -> None:
        bus = EventBus()
        handler = lambda evt: None  # noqa: E731
        bus.subscribe(TurnAdvanced, handler)

        self.assertTrue(bus.unsubscribe(TurnAdvanced, handler))
        self.assertFalse(bus.unsubscribe(TurnAdvanced, handler))
        self.assertEqual(0, bus.handler_count(TurnAdvanced))


class NotificationOutboxTests(unittest.TestCase):
    def test_account_events_queue_links(self) -> None:
        bus = EventBus()
        outbox = NotificationOutbox("https://tracker.example/")
        register_notification_handlers(bus, outbox)

        bus.publish(UserRegistered(user_id="u1", email="dm@example.com", verification_token="abc"))
        bus.publish(PasswordResetRequested(user_id="u1", email="dm@example.com", reset_token="xyz"))

        self.assertEqual(
            ["https://tracker.example/verify-email?token=abc", "https://tracker.example/reset-password/xyz"],
            [message.link for message in outbox.messages],
        )

    def test_outbox_keeps_only_newest_messages_and_drains(self) -> None:
        bus = EventBus()
        outbox = NotificationOutbox("https://tracker.example", limit=2)
        register_notification_handlers(bus, outbox)

        for token in ("one", "two", "three"):
            bus.publish(PasswordResetRequested(user_id="u1", email="dm@example.com", reset_token=token))

        self.assertEqual(2, len(outbox.messages))
        drained = outbox.drain()
        self.assertEqual(
            ["https://tracker.example/reset-password/two", "https://tracker.example/reset-password/three"],
            [message.link for message in drained],
        )
        self.assertEqual(0, len(outbox.messages))
        with self.assertRaises(ValueError):
            NotificationOutbox("https://tracker.example", limit=0)


if __name__ == "__main__":
    unittest.main()
