#!/usr/bin/env python3
"""
(C) 2026 Joseph Tingiris (joseph.tingiris@gmail.com)

Focused CLI tests for `bin/keybindings-merge.py`.
"""

import json
import os
import py_compile
import subprocess
import sys
import tempfile
import unittest
from textwrap import dedent


SCRIPT = os.path.normpath(
    os.path.join(os.path.dirname(__file__), "..", "bin", "keybindings-merge.py")
)
REPO_ROOT = os.path.normpath(os.path.join(os.path.dirname(__file__), ".."))

BASE = dedent(
    """\
    [
      {
        "key": "ctrl+a",
        "command": "A",
        "when": "editorFocus"
      }
    ]
    """
)

LOCAL = dedent(
    """\
    [
      {
        "key": "ctrl+a",
        "command": "A",
        "when": "editorFocus"
      },
      {
        "key": "ctrl+b",
        "command": "B"
      }
    ]
    """
)

REMOTE = dedent(
    """\
    [
      {
        "key": "ctrl+a",
        "command": "A",
        "when": "editorFocus"
      },
      {
        "key": "ctrl+c",
        "command": "C"
      }
    ]
    """
)

REMOTE_CONFLICT = dedent(
    """\
    [
      {
        "key": "ctrl+a",
        "command": "A",
        "when": "panelFocus"
      }
    ]
    """
)

LOCAL_CONFLICT = dedent(
    """\
    [
      {
        "key": "ctrl+a",
        "command": "A",
        "when": "sideBarFocus"
      }
    ]
    """
)


def run_merge(args: list[str]) -> subprocess.CompletedProcess[bytes]:
    """Run the merge script with args."""
    return subprocess.run(
        [sys.executable, SCRIPT] + args,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        cwd=REPO_ROOT,
    )


class KeybindingsMergeCliTests(unittest.TestCase):
    """CLI behavior tests for keybindings-merge."""

    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def write(self, name: str, text: str) -> str:
        path = os.path.join(self.tmp.name, name)
        with open(path, "w", encoding="utf-8", newline="") as handle:
            handle.write(text)
        return path

    def test_script_compiles(self) -> None:
        py_compile.compile(SCRIPT, doraise=True)

    def test_help_exits_99(self) -> None:
        proc = run_merge(["--help"])
        self.assertEqual(proc.returncode, 99)
        self.assertIn("usage:", proc.stdout.decode("utf-8").lower())

    def test_no_args_exits_99(self) -> None:
        proc = run_merge([])
        self.assertEqual(proc.returncode, 99)

    def test_missing_remote_exits_99(self) -> None:
        proc = run_merge([self.write("local.json", LOCAL)])
        self.assertEqual(proc.returncode, 99)

    def test_clean_merge_to_stdout(self) -> None:
        proc = run_merge([
            self.write("local.json", LOCAL),
            self.write("remote.json", REMOTE),
            self.write("base.json", BASE),
        ])
        self.assertEqual(proc.returncode, 0, msg=proc.stderr.decode("utf-8"))
        out = proc.stdout.decode("utf-8")
        self.assertRegex(out, r'"command":\s*"A"')
        self.assertRegex(out, r'"command":\s*"B"')
        self.assertRegex(out, r'"command":\s*"C"')
        self.assertNotIn("<<<<<<<", out)

    def test_conflict_exits_1_with_markers(self) -> None:
        proc = run_merge([
            self.write("local.json", LOCAL_CONFLICT),
            self.write("remote.json", REMOTE_CONFLICT),
            self.write("base.json", BASE),
        ])
        self.assertEqual(proc.returncode, 1)
        out = proc.stdout.decode("utf-8")
        self.assertTrue(out.startswith("<<<<<<< local\n"))
        self.assertIn("\n=======\n", out)
        self.assertTrue(out.endswith(">>>>>>> remote"))

    def test_out_file_as_merge_driver(self) -> None:
        local = self.write("local.json", LOCAL)
        proc = run_merge(["-o", local, local, self.write("remote.json", REMOTE), self.write("base.json", BASE)])
        self.assertEqual(proc.returncode, 0, msg=proc.stderr.decode("utf-8"))
        self.assertEqual(proc.stdout.decode("utf-8"), "")
        with open(local, "r", encoding="utf-8") as handle:
            merged = handle.read()
        self.assertIn('"command": "C"', merged)

    def test_json_output(self) -> None:
        local = self.write("local.json", LOCAL)
        proc = run_merge(["--json", local, local, "-"])
        self.assertEqual(proc.returncode, 0, msg=proc.stderr.decode("utf-8"))
        payload = json.loads(proc.stdout.decode("utf-8"))
        self.assertEqual(payload, {"mergeContent": LOCAL, "hasChanges": False, "hasConflicts": False})

    def test_summary_goes_to_stderr(self) -> None:
        local = self.write("local.json", LOCAL)
        remote = self.write("remote.json", REMOTE)
        proc = run_merge(["-s", local, remote, local])
        self.assertEqual(proc.returncode, 0)
        self.assertEqual(proc.stdout.decode("utf-8"), REMOTE)
        self.assertIn("changes=yes conflicts=no", proc.stderr.decode("utf-8"))

    def test_normalized_keys_file(self) -> None:
        local = self.write("local.json", '[{"key": "cmd+a", "command": "A"}]')
        remote = self.write("remote.json", '[{"key": "super+a", "command": "A"}]')
        table = self.write("keys.json", json.dumps({"cmd+a": "meta+a", "super+a": "meta+a"}))
        proc = run_merge(["--json", "-k", table, local, remote])
        self.assertEqual(proc.returncode, 0, msg=proc.stderr.decode("utf-8"))
        self.assertFalse(json.loads(proc.stdout.decode("utf-8"))["hasChanges"])

    def test_escalate_binding_conflicts(self) -> None:
        base = self.write("base.json", "[]")
        local = self.write("local.json", '[{"key": "ctrl+k", "command": "X"}]')
        remote = self.write("remote.json", '[{"key": "ctrl+k", "command": "Y"}]')
        self.assertEqual(run_merge([local, remote, base]).returncode, 0)
        self.assertEqual(run_merge(["-e", local, remote, base]).returncode, 1)

    def test_debug_output(self) -> None:
        proc = run_merge([
            self.write("local.json", LOCAL),
            self.write("remote.json", REMOTE),
            self.write("base.json", BASE),
            "--debug", "2", "--debug", "target=merge", "--color", "never",
        ])
        self.assertEqual(proc.returncode, 0)
        err = proc.stderr.decode("utf-8")
        self.assertIn("[DEBUG:1:merge]", err)
        self.assertNotIn(":compare]", err)

    def test_unparseable_input_exits_2(self) -> None:
        proc = run_merge([self.write("local.json", "[ {"), self.write("remote.json", REMOTE)])
        self.assertEqual(proc.returncode, 2)
        self.assertIn("error:", proc.stderr.decode("utf-8"))

    def test_missing_file_exits_2(self) -> None:
        proc = run_merge([os.path.join(self.tmp.name, "nope.json"), self.write("remote.json", REMOTE)])
        self.assertEqual(proc.returncode, 2)


if __name__ == "__main__":
    unittest.main()
