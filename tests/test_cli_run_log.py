from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path


class TestCommandWritesLog(unittest.TestCase):
    def test_log_created_on_config_error(self) -> None:
        repo_root = Path(__file__).resolve().parents[1]

        with tempfile.TemporaryDirectory() as td:
            log_path = Path(td) / "out" / "run.log"
            missing_cfg = Path(td) / "missing_config.yaml"

            env = dict(os.environ)
            existing_pp = env.get("PYTHONPATH", "")
            env["PYTHONPATH"] = (
                f"{repo_root}{os.pathsep}{existing_pp}" if existing_pp else str(repo_root)
            )

            proc = subprocess.run(
                [
                    sys.executable,
                    "-m",
                    "etch_registry",
                    "stats",
                    "--config",
                    str(missing_cfg),
                    "--log",
                    str(log_path),
                ],
                cwd=repo_root,
                env=env,
                capture_output=True,
                text=True,
            )

            self.assertEqual(proc.returncode, 2, msg=proc.stderr)
            self.assertTrue(log_path.exists())

            events: list[str] = []
            for ln in log_path.read_text(encoding="utf-8").splitlines():
                if not ln.strip():
                    continue
                obj = json.loads(ln)
                ev = obj.get("event")
                if isinstance(ev, str):
                    events.append(ev)

            self.assertIn("command_started", events)
            self.assertIn("command_failed", events)

    def test_log_records_config_hash_and_audit_events(self) -> None:
        repo_root = Path(__file__).resolve().parents[1]

        with tempfile.TemporaryDirectory() as td:
            log_path = Path(td) / "run.log"
            cfg_path = Path(td) / "config.yaml"
            cfg_path.write_text(
                "registry:\n"
                "  variant: multi\n"
                "  admin: \"0xOwner\"\n"
                "storage:\n"
                "  path: \":memory:\"\n",
                encoding="utf-8",
            )
            event_path = Path(td) / "event.json"
            event_path.write_text(
                json.dumps(
                    {
                        "id": "01",
                        "pubkey": "02",
                        "created_at": 1736063047,
                        "kind": 1,
                        "content": "hi",
                        "tags": [["t", "calisthenics"]],
                        "sig": "03",
                    }
                ),
                encoding="utf-8",
            )

            env = dict(os.environ)
            env.pop("ETCH_CALLER", None)
            existing_pp = env.get("PYTHONPATH", "")
            env["PYTHONPATH"] = (
                f"{repo_root}{os.pathsep}{existing_pp}" if existing_pp else str(repo_root)
            )

            proc = subprocess.run(
                [
                    sys.executable,
                    "-m",
                    "etch_registry",
                    "create-post",
                    "--caller",
                    "0xOWNER",
                    "--uri",
                    "https://example.com/1.json",
                    "--event",
                    str(event_path),
                    "--token-id",
                    "1",
                    "--config",
                    str(cfg_path),
                    "--log",
                    str(log_path),
                ],
                cwd=repo_root,
                env=env,
                capture_output=True,
                text=True,
            )

            self.assertEqual(proc.returncode, 0, msg=proc.stderr)

            records = [
                json.loads(ln)
                for ln in log_path.read_text(encoding="utf-8").splitlines()
                if ln.strip()
            ]
            by_event = {r["event"]: r for r in records}

            loaded = by_event["config_loaded"]
            self.assertRegex(loaded["data"]["config_sha256"], r"^[0-9a-f]{64}$")

            audit = by_event["pub_event"]
            self.assertEqual(audit["level"], "AUDIT")
            self.assertEqual(audit["caller"], "0xowner")
            self.assertEqual(audit["data"]["token_id"], 1)
            self.assertEqual(audit["data"]["tags_json"], '[["t","calisthenics"]]')
            self.assertIn("post_created", by_event)


if __name__ == "__main__":
    unittest.main()
