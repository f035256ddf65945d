"""Tests for CLI subcommands."""

from __future__ import annotations

from pathlib import Path

import pytest
from click.testing import CliRunner

from toolgate.cli.main import cli

PROJECT_POLICY = """
Bash:
  "git *": allow
  "rm *": ask
Read:
  - patterns: ["**"]
    action: allow
  - patterns: ["**/*.env"]
    action: deny
    description: Secrets stay closed
Edit:
  - patterns: ["src/**"]
    action: allow
    when:
      environments: [dev]
"""


@pytest.fixture
def project(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    for var in ("TOOLGATE_ENV", "TOOLGATE_USER", "TOOLGATE_APPROVAL_TIMEOUT"):
        monkeypatch.delenv(var, raising=False)
    root = tmp_path / "project"
    (root / ".toolgate").mkdir(parents=True)
    (root / ".toolgate" / "permissions.yaml").write_text(PROJECT_POLICY)
    return root


def _invoke(*args: str, input: str | None = None):
    return CliRunner().invoke(cli, list(args), input=input)


class TestCheckCommand:
    def test_allow(self, project: Path):
        result = _invoke("check", "Bash", "git status", "--cwd", str(project))
        assert result.exit_code == 0
        assert result.output.startswith("allow\tproject:0\t")

    def test_ask(self, project: Path):
        result = _invoke("check", "bash", "rm -rf build", "--cwd", str(project))
        assert result.exit_code == 2
        assert result.output.startswith("ask\tproject:1")

    def test_default_deny(self, project: Path):
        result = _invoke("check", "Bash", "curl example.com", "--cwd", str(project))
        assert result.exit_code == 1
        assert result.output.startswith("deny\t-\t")
        assert "denied by default" in result.output

    def test_last_match_with_description(self, project: Path):
        result = _invoke("check", "Read", "config/prod.env", "--cwd", str(project))
        assert result.exit_code == 1
        assert "Secrets stay closed" in result.output

    def test_environment_option(self, project: Path):
        dev = _invoke("check", "Edit", "src/app.py", "--cwd", str(project), "--env", "dev")
        prod = _invoke("check", "Edit", "src/app.py", "--cwd", str(project), "--env", "prod")
        assert dev.exit_code == 0
        assert prod.exit_code == 1

    def test_at_option(self, project: Path, tmp_path: Path):
        policy = tmp_path / "night.toml"
        policy.write_text(
            '[[Bash]]\npatterns = ["*"]\naction = "deny"\n'
            'when = { time_window = "22:00-06:00" }\n'
        )
        base = ("check", "Bash", "git push", "--cwd", str(project), "--session-policy", str(policy))
        assert _invoke(*base, "--at", "23:30").exit_code == 1
        assert _invoke(*base, "--at", "12:00").exit_code == 0

    def test_bad_at_option(self, project: Path):
        result = _invoke("check", "Bash", "ls", "--cwd", str(project), "--at", "noonish")
        assert result.exit_code == 2
        assert "--at" in result.output

    def test_agent_policy(self, project: Path, tmp_path: Path):
        auditor = tmp_path / "auditor.toml"
        auditor.write_text('Bash = "deny"\n')
        args = ("check", "Bash", "git log", "--cwd", str(project), "--agent-policy", f"auditor={auditor}")
        assert _invoke(*args, "--agent", "auditor").exit_code == 1
        assert _invoke(*args, "--agent", "builder").exit_code == 0

    def test_bad_agent_policy_value(self, project: Path):
        result = _invoke("check", "Bash", "ls", "--cwd", str(project), "--agent-policy", "nopath")
        assert result.exit_code == 2
        assert "AGENT=PATH" in result.output

    def test_malformed_scope_reported(self, project: Path, tmp_path: Path):
        broken = tmp_path / "broken.yaml"
        broken.write_text("Bash: whenever\n")
        result = _invoke(
            "check", "Bash", "git status", "--cwd", str(project), "--global-policy", str(broken),
        )
        # The project scope still applies
        assert result.exit_code == 0
        assert "Warning:" in result.output
        assert "global:" in result.output

    def test_interactive_plain_prompt(self, project: Path):
        result = _invoke(
            "check", "Bash", "rm -rf build", "--cwd", str(project),
            "--interactive", "--no-rich", input="y\n",
        )
        assert result.exit_code == 0
        assert "allow\tproject:1\tApproval approved" in result.output


class TestExplainCommand:
    def test_lists_applicable_rules(self, project: Path):
        result = _invoke("explain", "Read", "app.env", "--cwd", str(project))
        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert len(lines) == 2
        assert lines[0].startswith("   project:2")
        assert lines[1].startswith("=> project:3")

    def test_no_rule(self, project: Path):
        result = _invoke("explain", "Deploy", "web", "--cwd", str(project))
        assert result.exit_code == 0
        assert "denied by default" in result.output


class TestRulesCommand:
    def test_lists_effective_rules(self, project: Path):
        result = _invoke("rules", "--cwd", str(project))
        assert result.exit_code == 0
        assert "Bash(git *) -> allow" in result.output
        assert "[conditional]" in result.output
        assert "5 rules for agent 'default'" in result.output

    def test_empty(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path / "home"))
        result = _invoke("rules", "--cwd", str(tmp_path))
        assert result.exit_code == 0
        assert "(no rules; everything is denied)" in result.output
