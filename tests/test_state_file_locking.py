from __future__ import annotations

import json
import multiprocessing
import os
import tempfile
import unittest

from quota.errors import StateStoreError
from utils.state_file import JsonFileStateStore, StateFileLockError, atomic_write_json, state_file_lock


def _hold_lock_worker(path: str, ready: multiprocessing.Event, release: multiprocessing.Event) -> None:
    with state_file_lock(path, timeout_seconds=2.0, poll_seconds=0.01):
        ready.set()
        release.wait(2.0)


class StateFileLockingTests(unittest.TestCase):
    def test_atomic_write_roundtrip(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            state_path = os.path.join(tmp_dir, "nested", "state.json")
            payload = {"quota-controller": {"accessKeyStatus": "disabled", "message": "Disabling access key: x."}}
            atomic_write_json(state_path, payload)
            with open(state_path, "r", encoding="utf-8") as f:
                self.assertEqual(json.load(f), payload)
            self.assertEqual([name for name in os.listdir(os.path.dirname(state_path)) if name.endswith(".tmp")], [])

    def test_state_lock_is_exclusive(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            state_path = os.path.join(tmp_dir, "state.json")
            ctx = multiprocessing.get_context("spawn")
            ready = ctx.Event()
            release = ctx.Event()
            proc = ctx.Process(target=_hold_lock_worker, args=(state_path, ready, release))
            proc.start()
            try:
                self.assertTrue(ready.wait(2.0), "worker did not acquire state lock in time")
                with self.assertRaises(StateFileLockError):
                    with state_file_lock(state_path, timeout_seconds=0.08, poll_seconds=0.01):
                        pass
            finally:
                release.set()
                proc.join(2.0)
                if proc.is_alive():
                    proc.terminate()
                    proc.join(1.0)
            self.assertEqual(proc.exitcode, 0)


class JsonFileStateStoreTests(unittest.TestCase):
    def test_missing_file_and_key_read_as_absent(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            store = JsonFileStateStore(os.path.join(tmp_dir, "state.json"))
            self.assertIsNone(store.get("quota-controller"))
            store.put("other", {"a": 1})
            self.assertIsNone(store.get("quota-controller"))

    def test_put_keeps_other_keys(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            store = JsonFileStateStore(os.path.join(tmp_dir, "state.json"))
            store.put("other", {"a": 1})
            store.put("quota-controller", {"accessKeyStatus": "enabled"})
            store.put("quota-controller", {"accessKeyStatus": "disabled"})
            self.assertEqual(store.get("other"), {"a": 1})
            self.assertEqual(store.get("quota-controller"), {"accessKeyStatus": "disabled"})

    def test_corrupt_file_is_an_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = os.path.join(tmp_dir, "state.json")
            with open(path, "w", encoding="utf-8") as f:
                f.write("{not json")
            store = JsonFileStateStore(path)
            with self.assertRaises(StateStoreError):
                store.get("quota-controller")
            with self.assertRaises(StateStoreError):
                store.put("quota-controller", {"accessKeyStatus": "enabled"})

    def test_put_refuses_non_object_root(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = os.path.join(tmp_dir, "state.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump(["not", "an", "object"], f)
            store = JsonFileStateStore(path)
            with self.assertRaises(StateStoreError):
                store.put("quota-controller", {"accessKeyStatus": "enabled"})
            with open(path, "r", encoding="utf-8") as f:
                self.assertEqual(json.load(f), ["not", "an", "object"])


if __name__ == "__main__":
    unittest.main()
