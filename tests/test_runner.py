import tempfile
import textwrap
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

from scoreprobe.checks.results import CheckConfig, CheckResult
from scoreprobe.runner import main, run_once


def _result(check_id: str, passed: bool, message: str = "") -> CheckResult:
    res = CheckResult.from_config(CheckConfig(id=check_id, score_weight=2), "imap")
    return res.succeed() if passed else res.fail(message)


class RunOnceTests(unittest.TestCase):
    def test_runs_batch_and_logs_each_result(self) -> None:
        engine = Mock()
        results = [_result("mail", True), _result("dc", False, "Matching content not found")]
        engine.run.return_value = results
        checks = [Mock(), Mock()]

        with self.assertLogs("scoreprobe.runner", level="INFO") as logs:
            out = run_once(engine, checks, timeout_s=12)

        self.assertIs(out, results)
        engine.run.assert_called_once_with(checks, timeout_s=12)
        joined = "\n".join(logs.output)
        self.assertIn("[PASS] mail (imap)", joined)
        self.assertIn("[FAIL] dc (imap): Matching content not found", joined)
        self.assertIn("1/2 checks passed (weight 2.0/4.0)", joined)


class MainTests(unittest.TestCase):
    def test_main_loads_checks_and_stops_on_interrupt(self) -> None:
        text = textwrap.dedent(
            """
            checks:
              - id: ssh
                type: tcp
                definition:
                  Host: 127.0.0.1
                  Port: 22
            """
        )
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "checks.yml"
            path.write_text(text)
            with patch("scoreprobe.runner.settings.CHECKS_PATH", str(path)), patch(
                "scoreprobe.runner.loop_forever", side_effect=KeyboardInterrupt
            ) as loop_mock, patch("scoreprobe.runner.logging.basicConfig"):
                self.assertEqual(main(), 0)

        checks = loop_mock.call_args.args[1]
        self.assertEqual([c.get_config().id for c in checks], ["ssh"])


if __name__ == "__main__":
    unittest.main()
