"""
Prompt templates for the AI step importer.

Templates use {{variable}} placeholders and render to chat messages:

    from testmanager.ai.prompts import render
    messages = render("fix_test_case_name", name="login works")
"""

import re


class PromptTemplate:
    """A single prompt template with metadata."""

    def __init__(self, name: str, system: str, user: str, description: str = ""):
        self.name = name
        self.system = system
        self.user = user
        self.description = description

    def render(self, **variables) -> list[dict]:
        """Render the template, returning chat messages."""
        system_rendered = self._substitute(self.system, variables)
        user_rendered = self._substitute(self.user, variables)

        messages = []
        if system_rendered.strip():
            messages.append({"role": "system", "content": system_rendered})
        if user_rendered.strip():
            messages.append({"role": "user", "content": user_rendered})
        return messages

    @staticmethod
    def _substitute(template: str, variables: dict) -> str:
        """Replace {{var}} placeholders with values."""
        def replacer(match):
            key = match.group(1).strip()
            return str(variables.get(key, f"{{{{{key}}}}}"))
        return re.sub(r"\{\{(\s*\w+\s*)\}\}", replacer, template)


_PLAYWRIGHT_SYSTEM = "You are a helpful assistant specializing in Playwright test automation."

_STEP_FORMAT = (
    "{\n"
    '  "action": "The action in plain language (e.g. \'Click the Submit button\') - no selectors or HTML",\n'
    '  "data": "Any data to input (for fill actions) - plain text only",\n'
    '  "expected": "Expected result as a human-readable sentence",\n'
    '  "playwrightCode": "The Playwright code that implements this step"\n'
    "}"
)

TEMPLATES = {
    t.name: t for t in [
        PromptTemplate(
            name="generate_steps",
            description="Convert numbered free-text lines into structured Playwright steps",
            system=_PLAYWRIGHT_SYSTEM,
            user=(
                "Given the following list of test step descriptions, convert each one into a "
                "structured Playwright test step.\n\n"
                "Test step descriptions:\n{{numbered_lines}}\n\n"
                "The 'action', 'data' and 'expected' fields must contain human-readable text only; "
                "selectors and code belong in 'playwrightCode'.\n\n"
                "Respond with a JSON array containing exactly {{count}} items, one per description "
                "and in the same order, each with this format:\n" + _STEP_FORMAT
            ),
        ),
        PromptTemplate(
            name="fix_test_case_name",
            description="Rewrite a test case name as 'Verify ... when ...'",
            system="You are a helpful assistant specializing in fixing spelling and vocabulary errors.",
            user=(
                "Improve the following test case name based on test automation best practices:\n"
                "Current name: \"{{name}}\"\n\n"
                "Rules:\n"
                "1. Always start with \"Verify\"\n"
                "2. Follow the pattern \"Verify [what] when [condition]\"\n"
                "3. Use sentence case and present tense\n"
                "4. Avoid abbreviations and special characters\n"
                "5. Keep it concise but informative\n\n"
                "Return only the improved test case name without any explanation."
            ),
        ),
        PromptTemplate(
            name="fix_step_text",
            description="Spelling and vocabulary fix for one step field",
            system=(
                "You are a helpful assistant specializing in fixing test automation "
                "terminology and step descriptions."
            ),
            user=(
                "Fix any spelling and vocabulary errors in the following test step text.\n"
                "Return only the corrected text without any explanations.\n\n"
                "Text to fix:\n{{text}}\n\n"
                "Keep the original meaning and technical terms. Preserve action verbs such as "
                "click, type, fill, select, navigate, go to, verify and expect."
            ),
        ),
    ]
}


def render(name: str, /, **variables) -> list[dict]:
    """Render a named template; KeyError if it does not exist."""
    tpl = TEMPLATES.get(name)
    if tpl is None:
        raise KeyError(f"Prompt template not found: {name}")
    return tpl.render(**variables)
