"""Unit tests for CLI interface."""

import json

import pytest
import typer
from typer.testing import CliRunner

from aaaa_reconciler import cli
from aaaa_reconciler.cli import app


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        f"""
wapi:
  base_url: https://gm.example.com
  username: admin
  password: secret
reconciler:
  state_file: {tmp_path / "state" / "state.db"}
logging:
  level: WARNING
""",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def fake_gateway(gateway, monkeypatch):
    """Route every command to the in-memory gateway."""
    gateway.seed("legacy.example.com", "2001:db8::99", {"Site": "Blr"})
    monkeypatch.setattr(cli, "build_gateway", lambda settings: gateway)
    return gateway


class TestCLI:
    """Test CLI interface."""

    @pytest.fixture(autouse=True)
    def setup_method(self, config_file, declarations_file):
        self.runner = CliRunner()
        self.config = str(config_file)
        self.declarations = str(declarations_file)

    def invoke(self, *args, **kwargs):
        return self.runner.invoke(app, ["--config", self.config, *args], **kwargs)

    def test_cli_app_structure(self):
        assert isinstance(app, typer.Typer)

    def test_validate_success(self):
        result = self.invoke("validate", self.declarations)

        assert result.exit_code == 0
        assert "3 record(s) valid" in result.output

    def test_validate_reports_every_error(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(
            """
records:
  both:
    fqdn: a.example.com
    address: "2001:db8::1"
    cidr: "2001:db8::/64"
  none:
    fqdn: b.example.com
  broken:
    fqdn: c.example.com
    ttl: -1
""",
            encoding="utf-8",
        )

        result = self.invoke("validate", str(path))

        assert result.exit_code == 1
        assert "3 invalid record(s)" in result.output

    def test_validate_missing_file(self, tmp_path):
        result = self.invoke("validate", str(tmp_path / "missing.yaml"))

        assert result.exit_code != 0

    def test_missing_config_file(self, tmp_path):
        result = self.runner.invoke(
            app, ["--config", str(tmp_path / "nope.yaml"), "validate", self.declarations]
        )

        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_plan_without_state(self):
        result = self.invoke("plan", self.declarations)

        assert result.exit_code == 0
        assert result.output.count("create") >= 3

    def test_plan_invalid_declaration(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("records:\n  none:\n    fqdn: b.example.com\n", encoding="utf-8")

        result = self.invoke("plan", str(path))

        assert result.exit_code == 1
        assert "cannot be applied" in result.output

    def test_apply_then_noop(self, fake_gateway):
        first = self.invoke("apply", self.declarations)
        second = self.invoke("apply", self.declarations)

        assert first.exit_code == 0, first.output
        assert "Created: 3" in first.output
        assert second.exit_code == 0
        assert "Unchanged: 3" in second.output
        assert fake_gateway.methods().count("create") == 2
        assert "close" in fake_gateway.methods()

    def test_apply_dry_run(self, fake_gateway):
        result = self.invoke("apply", self.declarations, "--dry-run")

        assert result.exit_code == 0
        assert "DRY RUN" in result.output
        assert [m for m in fake_gateway.methods() if m != "close"] == []

    def test_apply_failure_exit_code(self, gateway, monkeypatch):
        monkeypatch.setattr(cli, "build_gateway", lambda settings: gateway)

        result = self.invoke("apply", self.declarations)

        assert result.exit_code == 1
        assert "Failed: 1" in result.output

    def test_apply_without_wapi_config(self, tmp_path):
        config = tmp_path / "nowapi.yaml"
        config.write_text(
            f"reconciler:\n  state_file: {tmp_path / 'state.db'}\n", encoding="utf-8"
        )

        result = self.runner.invoke(app, ["--config", str(config), "apply", self.declarations])

        assert result.exit_code == 1
        assert "not configured" in result.output

    def test_show_empty(self):
        result = self.invoke("show")

        assert result.exit_code == 0
        assert "No tracked records." in result.output

    def test_show_after_apply(self, fake_gateway):
        self.invoke("apply", self.declarations)

        listing = self.invoke("show")
        single = self.invoke("show", "web")

        assert listing.exit_code == 0
        assert "legacy" in listing.output
        assert single.exit_code == 0
        data = json.loads(single.output)
        assert data["fqdn"] == "web.example.com"
        assert data["ipv6_addr"] == "2001:db8::10"
        assert data["mode"] == "fixed"

    def test_show_untracked(self):
        result = self.invoke("show", "web")

        assert result.exit_code == 1
        assert "not tracked" in result.output

    def test_destroy(self, fake_gateway):
        self.invoke("apply", self.declarations)

        result = self.invoke("destroy", "web", "--yes")

        assert result.exit_code == 0
        assert "Deleted: web" in result.output
        assert fake_gateway.find("web.example.com") == []

    def test_destroy_aborted(self, fake_gateway):
        self.invoke("apply", self.declarations)

        result = self.invoke("destroy", "web", input="n\n")

        assert result.exit_code == 0
        assert "Aborted." in result.output
        assert fake_gateway.find("web.example.com") != []

    def test_destroy_untracked(self, fake_gateway):
        result = self.invoke("destroy", "nope", "--yes")

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_refresh(self, fake_gateway):
        self.invoke("apply", self.declarations)
        ref = next(
            ref for ref, body in fake_gateway.objects.items() if body["name"] == "api.example.com"
        )
        del fake_gateway.objects[ref]

        result = self.invoke("refresh")

        assert result.exit_code == 0
        assert "Deleted: 1" in result.output
        assert "Unchanged: 2" in result.output
