"""Terminal rendering of setup events and prompts.

Events are printed as they arrive. Prompts block on stdin and turn the
user's answers into the matching response; aborting any prompt (Ctrl-C or
end of input) answers with a cancel.
"""

from typing import Dict, Optional

import click

from agentwire.orchestrator.actions import (
    ApiKeyEntryPrompt,
    ApiKeyResponse,
    CancelResponse,
    CommandOutputResult,
    CompleteEvent,
    ConfigWrittenResult,
    ConfirmPrompt,
    ConfirmResponse,
    DetectionSummaryResult,
    ErrorEvent,
    FormField,
    FormPrompt,
    FormSubmitResponse,
    IntegrationTestResult,
    NeedInputEvent,
    OauthCompleteResponse,
    OauthFlowPrompt,
    ProgressEvent,
    ShowResultEvent,
    SkipResponse,
    StatusEvent,
    ToolSelectionPrompt,
    ToolSelectionResponse,
    UserPrompt,
    UserResponse,
    WizardPrompt,
    WizardStepResponse,
)


OUTPUT_PREVIEW_LINES = 20


def _preview(text: str) -> str:
    lines = text.rstrip().splitlines()
    if len(lines) <= OUTPUT_PREVIEW_LINES:
        return "\n".join(lines)
    hidden = len(lines) - OUTPUT_PREVIEW_LINES
    return "\n".join(lines[:OUTPUT_PREVIEW_LINES] + [f"... ({hidden} more lines)"])


def render_event(event) -> None:
    """Print one setup event."""
    if isinstance(event, StatusEvent):
        click.echo(f"  {event.message}")
    elif isinstance(event, ProgressEvent):
        pct = f"{event.percent:3.0f}% " if event.percent is not None else ""
        click.echo(f"[{pct}{event.message}]")
        if event.detail:
            click.echo(f"  {event.detail}")
    elif isinstance(event, ShowResultEvent):
        _render_result(event.content)
    elif isinstance(event, CompleteEvent):
        click.echo()
        click.secho(event.summary, fg="green", bold=True)
        for item in event.items:
            click.echo(f"  - {item}")
    elif isinstance(event, ErrorEvent):
        label = "Warning" if event.recoverable else "Error"
        click.secho(f"{label}: {event.message}", fg="yellow" if event.recoverable else "red", err=True)
    elif isinstance(event, NeedInputEvent):
        click.echo()
        click.secho(_prompt_title(event.action), bold=True)


def _render_result(content) -> None:
    if isinstance(content, DetectionSummaryResult):
        click.echo("Detected tools:")
        for tool in content.tools:
            mark = "x" if tool.get("installed") else " "
            version = tool.get("version") or ""
            auth = " (authenticated)" if tool.get("authenticated") else ""
            click.echo(f"  [{mark}] {tool.get('name')} {version}{auth}".rstrip())
    elif isinstance(content, CommandOutputResult):
        click.echo(f"$ {content.command}  (exit {content.exit_code})")
        if content.stdout.strip():
            click.echo(_preview(content.stdout))
        if content.stderr.strip():
            click.echo(_preview(content.stderr), err=True)
    elif isinstance(content, ConfigWrittenResult):
        suffix = f" - {content.description}" if content.description else ""
        click.echo(f"Wrote {content.path}{suffix}")
    elif isinstance(content, IntegrationTestResult):
        verdict = "PASS" if content.success else "FAIL"
        click.echo(f"Test {content.model}: {verdict}")
        if content.output.strip():
            click.echo(_preview(content.output))


def _prompt_title(prompt: UserPrompt) -> str:
    if isinstance(prompt, (FormPrompt, WizardPrompt, ConfirmPrompt)):
        return prompt.title
    if isinstance(prompt, OauthFlowPrompt):
        return f"Sign in to {prompt.provider}"
    if isinstance(prompt, ApiKeyEntryPrompt):
        return f"API key for {prompt.provider}"
    if isinstance(prompt, ToolSelectionPrompt):
        return prompt.message
    return prompt.type


def _ask_field(field: FormField) -> str:
    hide = field.field_type == "password"
    if field.help_text:
        click.echo(f"  {field.help_text}")

    if field.options:
        choices = [o.value for o in field.options]
        for option in field.options:
            click.echo(f"  {option.value}: {option.label}")
        return click.prompt(
            field.label,
            type=click.Choice(choices),
            default=field.default_value if field.default_value in choices else None,
        )

    if field.required:
        return click.prompt(field.label, default=field.default_value, hide_input=hide)
    return click.prompt(
        field.label,
        default=field.default_value or "",
        show_default=bool(field.default_value),
        hide_input=hide,
    )


def _ask_form(form: FormPrompt) -> Dict[str, str]:
    if form.description:
        click.echo(form.description)
    return {field.name: _ask_field(field) for field in form.fields}


def ask_user(prompt: UserPrompt) -> UserResponse:
    """Show a prompt on the terminal and collect the response."""
    try:
        return _ask(prompt)
    except click.Abort:
        return CancelResponse()


def _ask(prompt: UserPrompt) -> UserResponse:
    if isinstance(prompt, FormPrompt):
        return FormSubmitResponse(form_id=prompt.form_id, values=_ask_form(prompt))

    if isinstance(prompt, WizardPrompt):
        step = min(prompt.current_step, len(prompt.steps) - 1)
        if step < 0:
            return SkipResponse(reason="empty wizard")
        page = prompt.steps[step]
        click.echo(f"Step {step + 1}/{len(prompt.steps)}: {page.label}")
        if page.description:
            click.echo(page.description)
        return WizardStepResponse(wizard_id=prompt.wizard_id, step=step, values=_ask_form(page.form))

    if isinstance(prompt, ConfirmPrompt):
        click.echo(prompt.message)
        return ConfirmResponse(confirm_id=prompt.confirm_id, confirmed=click.confirm("Continue?", default=True))

    if isinstance(prompt, OauthFlowPrompt):
        click.echo(prompt.instructions)
        click.echo()
        click.echo(f"Then run: {prompt.login_command}")
        if not click.confirm("Done?", default=True):
            return CancelResponse()
        return OauthCompleteResponse(provider=prompt.provider, success=True)

    if isinstance(prompt, ApiKeyEntryPrompt):
        if prompt.help_url:
            click.echo(f"Get a key at {prompt.help_url}")
        key: Optional[str] = click.prompt(
            prompt.env_var, default="", show_default=False, hide_input=True
        )
        if not key:
            return SkipResponse(reason="no key entered")
        return ApiKeyResponse(provider=prompt.provider, key=key)

    if isinstance(prompt, ToolSelectionPrompt):
        for option in prompt.available:
            mark = "x" if option.installed else " "
            desc = f" - {option.description}" if option.description else ""
            click.echo(f"  [{mark}] {option.name}{desc}")
        raw = click.prompt("Tools (comma-separated)", default="", show_default=False)
        selected = [s.strip() for s in raw.split(",") if s.strip()]
        return ToolSelectionResponse(selected=selected)

    return SkipResponse(reason=f"unsupported prompt: {prompt.type}")
