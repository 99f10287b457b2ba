import json
import unittest

from scoreprobe.checks.http_check import HttpCheck
from scoreprobe.checks.imap_check import ImapCheck
from scoreprobe.checks.results import CheckConfig
from scoreprobe.checks.tcp_check import TcpCheck
from scoreprobe.checks.winrm_check import WinrmCheck
from scoreprobe.errors import ConfigValidationError, DefinitionParseError, ScoreprobeError

CONFIG = CheckConfig(id="svc-1", name="Service", group="team1", score_weight=2.5)


class MissingFieldOrderTests(unittest.TestCase):
    def assert_missing(self, check, definition, field: str) -> None:
        with self.assertRaises(ConfigValidationError) as cm:
            check.init(CONFIG, json.dumps(definition).encode())
        self.assertEqual(cm.exception.field, field)
        self.assertEqual(cm.exception.check_id, "svc-1")
        self.assertEqual(cm.exception.check_type, check.check_type)

    def test_winrm_reports_first_missing_field_in_order(self) -> None:
        full = {"Host": "h", "Username": "u", "Password": "p", "Cmd": "whoami"}
        self.assert_missing(WinrmCheck(), {}, "Host")
        self.assert_missing(WinrmCheck(), {"Cmd": "whoami"}, "Host")
        self.assert_missing(WinrmCheck(), {"Host": "h", "Password": "p"}, "Username")
        self.assert_missing(WinrmCheck(), {"Host": "h", "Username": "u", "Cmd": "x"}, "Password")
        self.assert_missing(WinrmCheck(), {**full, "Cmd": ""}, "Cmd")

    def test_imap_reports_first_missing_field_in_order(self) -> None:
        self.assert_missing(ImapCheck(), {"Password": "p"}, "Host")
        self.assert_missing(ImapCheck(), {"Host": "h", "Username": ""}, "Username")
        self.assert_missing(ImapCheck(), {"Host": "h", "Username": "u"}, "Password")

    def test_tcp_requires_port(self) -> None:
        self.assert_missing(TcpCheck(), {"Host": "h"}, "Port")

    def test_invalid_value_names_the_field(self) -> None:
        self.assert_missing(ImapCheck(), {"Host": "h", "Port": "not-a-port"}, "Port")
        self.assert_missing(
            WinrmCheck(),
            {"Host": "h", "Username": "u", "Password": "p", "Cmd": "c", "ContentRegex": "("},
            "ContentRegex",
        )

    def test_malformed_json_is_a_parse_error(self) -> None:
        with self.assertRaises(DefinitionParseError):
            ImapCheck().init(CONFIG, b"{not json")
        with self.assertRaises(DefinitionParseError):
            ImapCheck().init(CONFIG, b"[1, 2]")


class DefaultsTests(unittest.TestCase):
    def test_imap_defaults_apply_when_fields_absent(self) -> None:
        check = ImapCheck()
        check.init(CONFIG, b'{"Host": "mail", "Username": "u", "Password": "p"}')

        self.assertEqual(check.definition.port, 143)
        self.assertFalse(check.definition.encrypted)

    def test_winrm_defaults_apply_when_fields_absent(self) -> None:
        check = WinrmCheck()
        check.init(CONFIG, '{"Host": "dc", "Username": "u", "Password": "p", "Cmd": "hostname"}')

        self.assertEqual(check.definition.port, 5986)
        self.assertTrue(check.definition.encrypted)
        self.assertFalse(check.definition.match_content)
        self.assertEqual(check.definition.content_regex, ".*")

    def test_explicit_values_override_defaults(self) -> None:
        check = WinrmCheck()
        check.init(
            CONFIG,
            {
                "Host": "dc",
                "Username": "u",
                "Password": "p",
                "Cmd": "hostname",
                "Port": "5985",
                "Encrypted": False,
            },
        )

        self.assertEqual(check.definition.port, 5985)
        self.assertFalse(check.definition.encrypted)
        self.assertEqual(check.endpoint(), "http://dc:5985/wsman")

    def test_http_defaults(self) -> None:
        check = HttpCheck()
        check.init(CONFIG, {"host": "www"})
        self.assertEqual(check.url(), "http://www:80/")

    def test_keys_match_case_insensitively(self) -> None:
        check = WinrmCheck()
        check.init(
            CONFIG,
            {
                "host": "dc",
                "USERNAME": "u",
                "password": "p",
                "cmd": "hostname",
                "match_content": True,
                "contentregex": "dc",
            },
        )

        self.assertEqual(check.definition.host, "dc")
        self.assertEqual(check.definition.username, "u")
        self.assertTrue(check.definition.match_content)
        self.assertEqual(check.definition.content_regex, "dc")

    def test_unknown_keys_are_ignored(self) -> None:
        check = TcpCheck()
        check.init(CONFIG, {"Host": "h", "Port": 22, "Banner": "SSH"})
        self.assertEqual(check.definition.port, 22)


class ConfigAccessTests(unittest.TestCase):
    def test_get_config_returns_supplied_config(self) -> None:
        check = ImapCheck()
        check.init(CONFIG, {"Host": "h", "Username": "u", "Password": "p"})
        self.assertEqual(check.get_config(), CONFIG)

    def test_result_template_copies_config(self) -> None:
        check = ImapCheck()
        check.init(CONFIG, {"Host": "h", "Username": "u", "Password": "p"})

        result = check.new_result()

        self.assertEqual(result.id, "svc-1")
        self.assertEqual(result.name, "Service")
        self.assertEqual(result.group, "team1")
        self.assertEqual(result.score_weight, 2.5)
        self.assertEqual(result.check_type, "imap")
        self.assertFalse(result.passed)
        self.assertEqual(result.details, {})

    def test_result_template_requires_init(self) -> None:
        with self.assertRaises(ScoreprobeError):
            ImapCheck().new_result()


if __name__ == "__main__":
    unittest.main()
