import os
import sys

import httpx
import respx

# Add scripts to path so we can import the module
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "scripts"))
from run_watchdog import format_report, main

REPORT = {
    "count": 2,
    "retriggered": 1,
    "marked_failed": 1,
    "results": [{"call_id": "c1", "status": "retriggered"}, {"call_id": "c2", "status": "marked_failed"}],
}


class TestFormatReport:
    def test_quiet(self):
        assert format_report(REPORT, quiet=True) == "stuck=2 retriggered=1 marked_failed=1"

    def test_includes_results(self):
        out = format_report(REPORT)
        assert out.startswith("stuck=2 retriggered=1 marked_failed=1\n")
        assert '"call_id": "c2"' in out

    def test_empty_report(self):
        assert format_report({}, quiet=True) == "stuck=0 retriggered=0 marked_failed=0"


class TestMain:
    @respx.mock
    def test_success(self, capsys):
        route = respx.post("https://intake.example/watchdog").mock(return_value=httpx.Response(200, json=REPORT))
        code = main(["--url", "https://intake.example/", "--secret", "s3cret", "--quiet"])
        assert code == 0
        assert route.calls.last.request.headers["Authorization"] == "Bearer s3cret"
        assert "stuck=2" in capsys.readouterr().out

    def test_missing_secret(self, monkeypatch, capsys):
        monkeypatch.setenv("WATCHDOG_SECRET", "")
        assert main(["--url", "https://intake.example"]) == 2
        assert "WATCHDOG_SECRET" in capsys.readouterr().err

    @respx.mock
    def test_http_error(self, capsys):
        respx.post("https://intake.example/watchdog").mock(return_value=httpx.Response(401))
        assert main(["--url", "https://intake.example", "--secret", "wrong"]) == 1
        assert "failed" in capsys.readouterr().err
