"""Tests for terminal rendering and prompt answers."""

from unittest.mock import patch

import click

from agentwire.cli.render import ask_user, render_event
from agentwire.orchestrator.actions import (
    ApiKeyEntryPrompt,
    ApiKeyResponse,
    CancelResponse,
    CommandOutputResult,
    ConfirmPrompt,
    ErrorEvent,
    FormField,
    FormPrompt,
    FormSubmitResponse,
    OauthCompleteResponse,
    OauthFlowPrompt,
    ShowResultEvent,
    SkipResponse,
    ToolOption,
    ToolSelectionPrompt,
    WizardPage,
    WizardPrompt,
    WizardStepResponse,
)


class TestAskUser:
    """Tests for turning terminal input into responses."""

    def test_form(self):
        form = FormPrompt(
            title="Model",
            form_id="model",
            fields=[
                FormField(name="name", label="Name", required=True),
                FormField(name="alias", label="Alias"),
            ],
        )
        with patch("agentwire.cli.render.click.prompt", side_effect=["sonnet", ""]):
            response = ask_user(form)

        assert response == FormSubmitResponse(form_id="model", values={"name": "sonnet", "alias": ""})

    def test_wizard_answers_current_step(self):
        page = lambda label: WizardPage(
            label=label,
            form=FormPrompt(title=label, form_id=label, fields=[FormField(name="x", label="X")]),
        )
        wizard = WizardPrompt(title="W", wizard_id="w", steps=[page("one"), page("two")], current_step=1)

        with patch("agentwire.cli.render.click.prompt", return_value="val"):
            response = ask_user(wizard)

        assert response == WizardStepResponse(wizard_id="w", step=1, values={"x": "val"})

    def test_abort_cancels(self):
        prompt = ConfirmPrompt(title="t", message="m", confirm_id="c")
        with patch("agentwire.cli.render.click.confirm", side_effect=click.Abort()):
            assert isinstance(ask_user(prompt), CancelResponse)

    def test_oauth(self):
        prompt = OauthFlowPrompt(provider="claude", login_command="claude login", instructions="Install it")

        with patch("agentwire.cli.render.click.confirm", return_value=True):
            assert ask_user(prompt) == OauthCompleteResponse(provider="claude", success=True)
        with patch("agentwire.cli.render.click.confirm", return_value=False):
            assert isinstance(ask_user(prompt), CancelResponse)

    def test_api_key(self):
        prompt = ApiKeyEntryPrompt(provider="openai", env_var="OPENAI_API_KEY")

        with patch("agentwire.cli.render.click.prompt", return_value="sk-123"):
            assert ask_user(prompt) == ApiKeyResponse(provider="openai", key="sk-123")
        with patch("agentwire.cli.render.click.prompt", return_value=""):
            assert isinstance(ask_user(prompt), SkipResponse)

    def test_tool_selection(self):
        prompt = ToolSelectionPrompt(
            message="Pick tools",
            available=[ToolOption(name="claude", installed=True), ToolOption(name="codex")],
        )
        with patch("agentwire.cli.render.click.prompt", return_value="claude, codex,"):
            response = ask_user(prompt)

        assert response.selected == ["claude", "codex"]


class TestRenderEvent:
    """Tests for event printing."""

    def test_errors_go_to_stderr(self, capsys):
        render_event(ErrorEvent(message="Agent error: boom", recoverable=False))
        render_event(ErrorEvent(message="Command not allowed", recoverable=True))

        captured = capsys.readouterr()
        assert "Error: Agent error: boom" in captured.err
        assert "Warning: Command not allowed" in captured.err
        assert captured.out == ""

    def test_long_output_truncated(self, capsys):
        stdout = "\n".join(f"line {i}" for i in range(30))
        render_event(
            ShowResultEvent(content=CommandOutputResult(command="echo", stdout=stdout, stderr="", exit_code=0))
        )

        out = capsys.readouterr().out
        assert "$ echo  (exit 0)" in out
        assert "line 19" in out
        assert "line 20" not in out
        assert "(10 more lines)" in out
