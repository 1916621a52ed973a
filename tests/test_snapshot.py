from __future__ import annotations

import unittest

from quota.evaluator import Decision
from quota.metrics import CLASS_A, CLASS_B, DISABLED, ENABLED, STORAGE, MetricReading, format_bytes, format_integer
from quota.snapshot import PersistedSnapshot, build_snapshot, build_status_message, failure_result


class StatusMessageTests(unittest.TestCase):
    def test_disabling_message_lists_reasons(self) -> None:
        message = build_status_message(DISABLED, ENABLED, ["A over", "B over"], ["ignored"])
        self.assertEqual(message, "Disabling access key: A over; B over.")

    def test_reenabling_message_lists_checks(self) -> None:
        message = build_status_message(ENABLED, DISABLED, [], ["Storage 1 B <= 2 B"])
        self.assertEqual(message, "Re-enabling access key: Storage 1 B <= 2 B.")

    def test_reenabling_without_checks_has_fallback(self) -> None:
        self.assertEqual(
            build_status_message(ENABLED, DISABLED, [], []),
            "Re-enabling access key: no measurable metrics.",
        )

    def test_keeping_message(self) -> None:
        self.assertEqual(
            build_status_message(ENABLED, ENABLED, [], ["x <= y"]),
            "Keeping access key enabled. Metrics: x <= y.",
        )
        self.assertEqual(
            build_status_message(DISABLED, DISABLED, [], []),
            "Keeping access key disabled. Metrics: no thresholds configured.",
        )


class FormatterTests(unittest.TestCase):
    def test_bytes(self) -> None:
        self.assertEqual(format_bytes(512), "512 B")
        self.assertEqual(format_bytes(1024**3), "1.00 GB")
        self.assertEqual(format_bytes(1536), "1.50 KB")
        self.assertEqual(format_bytes(None), "unknown")

    def test_integer(self) -> None:
        self.assertEqual(format_integer(1_000_000), "1,000,000")
        self.assertEqual(format_integer(1234.5), "1,234.5")
        self.assertEqual(format_integer(float("nan")), "unknown")


class SnapshotTests(unittest.TestCase):
    def test_build_snapshot_and_result(self) -> None:
        metrics = [
            MetricReading(STORAGE, usage=10.0, quota=100.0, reenable=80.0),
            MetricReading(CLASS_A, usage=None, quota=1_000.0, reenable=800.0),
            MetricReading(CLASS_B, usage=3.0, quota=None, reenable=None),
        ]
        decision = Decision(current_state=DISABLED, next_state=ENABLED, reenable_checks=("Storage 10 B <= 80 B",))
        snapshot, result = build_snapshot(decision, metrics, "2026-10-17T00:00:00.000Z")

        self.assertEqual(snapshot.toggle_state, ENABLED)
        self.assertEqual(snapshot.message, "Re-enabling access key: Storage 10 B <= 80 B.")
        stored = snapshot.to_dict()
        self.assertEqual(stored["accessKeyStatus"], ENABLED)
        self.assertEqual(stored["lastUsageBytes"], 10.0)
        self.assertEqual(stored["classAQuota"], 1_000.0)
        self.assertNotIn("lastClassARequests", stored)
        self.assertNotIn("classBQuota", stored)

        payload = result.to_dict()
        self.assertTrue(payload["success"])
        self.assertEqual(payload["usage"], {"storageBytes": 10.0, "classBRequests": 3.0})
        self.assertEqual(payload["thresholds"][1], {"name": CLASS_A, "quota": 1_000.0, "reenable": 800.0})
        self.assertNotIn("warnings", payload)

    def test_snapshot_reads_back(self) -> None:
        original = PersistedSnapshot(
            toggle_state=DISABLED,
            metrics=(MetricReading(STORAGE, usage=5.0, quota=4.0, reenable=3.0),),
            updated_at="t",
            message="m",
        )
        self.assertEqual(PersistedSnapshot.from_dict(original.to_dict()), original)

    def test_legacy_flat_snapshot_is_understood(self) -> None:
        legacy = {
            "accessKeyStatus": "disabled",
            "lastUsageBytes": 2048,
            "quotaBytes": 1024,
            "reenableThresholdBytes": 819,
            "classAQuota": 1_000_000,
            "updatedAt": "2025-01-01T00:00:00.000Z",
        }
        snapshot = PersistedSnapshot.from_dict(legacy)
        assert snapshot is not None
        self.assertEqual(snapshot.toggle_state, DISABLED)
        storage = snapshot.metric(STORAGE)
        assert storage is not None
        self.assertEqual(storage.usage, 2048.0)
        self.assertEqual(storage.reenable, 819.0)

    def test_unusable_snapshot_is_absent(self) -> None:
        self.assertIsNone(PersistedSnapshot.from_dict(None))
        self.assertIsNone(PersistedSnapshot.from_dict({"accessKeyStatus": "unknown"}))
        self.assertIsNone(PersistedSnapshot.from_dict(["disabled"]))

    def test_failure_result(self) -> None:
        self.assertEqual(failure_result(RuntimeError("boom")), {"success": False, "error": "boom"})


if __name__ == "__main__":
    unittest.main()
