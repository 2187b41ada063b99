from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

_EVENT = {
    "id": "d283f3979d00cb5493f2da07819695bc299fba24aa6e0bacb484fe07a2fc0ae0",
    "pubkey": "4659db3b248cae1bb6856ee63308af6c9c15239e3bb76f425fbacdd84bb15330",
    "created_at": 1736063047,
    "kind": 1,
    "content": "Hello, world!",
    "tags": [],
    "sig": "c3cea60c7e452527daae9d5eb78805f44aac272a8075eeb6779be011e572fff2",
}


class TestCLISmoke(unittest.TestCase):
    def setUp(self) -> None:
        self.repo_root = Path(__file__).resolve().parents[1]
        self._td = tempfile.TemporaryDirectory()
        self.td = Path(self._td.name)

        self.cfg_path = self.td / "config.yaml"
        self.cfg_path.write_text(
            "registry:\n"
            "  variant: multi\n"
            "  admin: \"0xowner\"\n"
            "storage:\n"
            f"  path: {json.dumps(str(self.td / 'registry.sqlite'))}\n",
            encoding="utf-8",
        )
        self.event_path = self.td / "event.json"
        self.event_path.write_text(json.dumps(_EVENT), encoding="utf-8")

    def tearDown(self) -> None:
        self._td.cleanup()

    def _run(self, *args: str, caller: str | None = None) -> subprocess.CompletedProcess[str]:
        env = dict(os.environ)
        env.pop("ETCH_CALLER", None)
        if caller is not None:
            env["ETCH_CALLER"] = caller

        existing_pp = env.get("PYTHONPATH", "")
        env["PYTHONPATH"] = (
            f"{self.repo_root}{os.pathsep}{existing_pp}" if existing_pp else str(self.repo_root)
        )

        return subprocess.run(
            [sys.executable, "-m", "etch_registry", *args, "--config", str(self.cfg_path)],
            cwd=self.repo_root,
            env=env,
            capture_output=True,
            text=True,
        )

    def test_create_update_show_and_events(self) -> None:
        proc = self._run(
            "create-post",
            "--uri",
            "https://example.com/metadata.json",
            "--token-id",
            "1",
            "--event",
            str(self.event_path),
            caller="0xowner",
        )
        self.assertEqual(proc.returncode, 0, msg=proc.stderr)
        self.assertIn("token_id=1", proc.stdout)
        self.assertIn("balance=1", proc.stdout)
        self.assertIn("total_posts=1", proc.stdout)

        proc = self._run(
            "update-post",
            "--caller",
            "0xowner",
            "--token-id",
            "1",
            "--uri",
            "https://example.com/updated.json",
            "--event",
            str(self.event_path),
        )
        self.assertEqual(proc.returncode, 0, msg=proc.stderr)

        proc = self._run("show", "--token-id", "1", "--owner", "0xowner")
        self.assertEqual(proc.returncode, 0, msg=proc.stderr)
        self.assertIn("exists=true", proc.stdout)
        self.assertIn("uri=https://example.com/updated.json", proc.stdout)
        self.assertIn("balance=1", proc.stdout)

        proc = self._run("events", "--token-id", "1")
        self.assertEqual(proc.returncode, 0, msg=proc.stderr)
        lines = [json.loads(ln) for ln in proc.stdout.splitlines() if ln.strip()]
        self.assertEqual([r["action"] for r in lines], ["create", "update"])
        self.assertEqual(lines[0]["event_id"], "0x" + _EVENT["id"])
        self.assertEqual(lines[0]["tags_json"], "[]")

    def test_registry_errors_exit_5(self) -> None:
        args = ("create-post", "--uri", "u", "--token-id", "2", "--event", str(self.event_path))

        self.assertEqual(self._run(*args, caller="0xowner").returncode, 0)

        dup = self._run(*args, caller="0xowner")
        self.assertEqual(dup.returncode, 5)
        self.assertIn("Token already exists", dup.stderr)

        unauthorized = self._run(*args, caller="0xstranger")
        self.assertEqual(unauthorized.returncode, 5)
        self.assertIn("missing role MINTER_ROLE", unauthorized.stderr)

        missing = self._run(
            "update-post",
            "--token-id",
            "999",
            "--uri",
            "x",
            "--event",
            str(self.event_path),
            caller="0xowner",
        )
        self.assertEqual(missing.returncode, 5)
        self.assertIn("Post does not exist", missing.stderr)

        stats = self._run("stats")
        self.assertIn("total_posts=1", stats.stdout)

    def test_grant_role_then_create(self) -> None:
        proc = self._run("grant-role", "--account", "0xposter", caller="0xowner")
        self.assertEqual(proc.returncode, 0, msg=proc.stderr)
        self.assertIn("granted=true", proc.stdout)

        proc = self._run(
            "create-post",
            "--uri",
            "u",
            "--token-id",
            "3",
            "--quantity",
            "2",
            "--allow-multiple",
            "--event",
            str(self.event_path),
            caller="0xposter",
        )
        self.assertEqual(proc.returncode, 0, msg=proc.stderr)
        self.assertIn("balance=2", proc.stdout)

    def test_missing_caller_is_config_error(self) -> None:
        proc = self._run(
            "create-post", "--uri", "u", "--token-id", "1", "--event", str(self.event_path)
        )
        self.assertEqual(proc.returncode, 2)
        self.assertIn("ETCH_CALLER", proc.stderr)


if __name__ == "__main__":
    unittest.main()
