"""System instructions sent to the speech service for each call."""

from __future__ import annotations

from callbridge.config import CallConfig

TASK_TEMPLATE = (
    "{system_message}\n"
    "\n"
    "Your specific task for this call is: {task}\n"
    "\n"
    "Remember to:\n"
    "1. Focus on completing this specific task\n"
    "2. Be professional and courteous\n"
    "3. End the call appropriately when the task is complete"
)


def compose_instructions(call: CallConfig, prompt: str | None) -> str:
    """Build the session instructions from the fixed template and the operator prompt.

    Falls back to ``call.default_task`` when no prompt was claimed.
    """
    task = prompt.strip() if prompt and prompt.strip() else call.default_task
    system_message = call.system_message.replace("{marker}", call.end_call_marker)
    # Operator prompts may contain braces, so no str.format here
    return (
        TASK_TEMPLATE.replace("{system_message}", system_message)
        .replace("{task}", task)
    )
