"""
Playwright Test Manager
AI Step Importer.

Pipeline:
    1. Clean the input lines (trim, drop empties)
    2. Render the numbered prompt and call the configured provider once
    3. Extract the JSON array from the reply
    4. For every input line use the matching item if it is usable,
       otherwise derive the step with keyword heuristics

A provider error never aborts the batch: every line then takes the
heuristic path. Output order always matches input order.
"""

import json
import logging
import re

from testmanager.ai import prompts
from testmanager.ai.gateway import get_gateway
from testmanager.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

_FENCED = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_QUOTED = re.compile(r"""["'`]([^"'`]+)["'`]""")
_URL = re.compile(r"https?://[^\s'\"`)]+")


# ── JSON extraction ──────────────────────────────────────────────────────────

def extract_json_from_text(text):
    """Return the first JSON value found in an LLM reply, or None.

    A fenced ```json block wins; otherwise the first parsable `[...]` or
    `{...}` in the text is used.
    """
    if not text:
        return None
    fenced = _FENCED.search(text)
    if fenced:
        try:
            return json.loads(fenced.group(1))
        except json.JSONDecodeError:
            pass

    decoder = json.JSONDecoder()
    for match in re.finditer(r"[\[{]", text):
        try:
            value, _ = decoder.raw_decode(text, match.start())
        except json.JSONDecodeError:
            continue
        return value
    return None


# ── Keyword heuristics ───────────────────────────────────────────────────────

def _looks_like_code(line):
    return "await " in line or "page." in line or "expect(" in line


def _js_string(value):
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _after(line, verb_pattern):
    """Whatever follows the first match of verb_pattern, or None."""
    parts = re.split(verb_pattern, line, maxsplit=1, flags=re.IGNORECASE)
    if len(parts) < 2:
        return None
    rest = re.sub(r"^\s*(on|the|at)\s+", "", parts[1], flags=re.IGNORECASE)
    return rest.strip(" .") or None


def _target(line, verb_pattern):
    """The quoted text in a line, else whatever follows the verb."""
    quoted = _QUOTED.findall(line)
    if quoted:
        return quoted[-1].strip()
    return _after(line, verb_pattern) or line


def heuristic_step(line):
    """Deterministic step for one line, keyed on its leading keywords."""
    lower = line.lower()
    code = line if _looks_like_code(line) else None

    if re.search(r"\b(navigate|go to|goto|open|visit)\b", lower):
        url_match = _URL.search(line)
        url = url_match.group(0) if url_match else _target(line, r"navigate to|navigate|go to|goto|open|visit")
        step = {
            "action": f"Navigate to {url}",
            "data": url,
            "expected": "Page is loaded",
            "playwright_script": code or f"await page.goto('{_js_string(url)}');",
        }
    elif re.search(r"\b(fill|type|enter|input)\b", lower):
        quoted = _QUOTED.findall(line)
        value = quoted[0] if quoted else ""
        field = quoted[1] if len(quoted) > 1 else None
        if field is None:
            field = _after(_QUOTED.sub("", line), r"\binto\b|\bin\b") or "input"
        field = re.sub(r"\s+field$", "", field, flags=re.IGNORECASE)
        step = {
            "action": f"Fill the {field} field",
            "data": value,
            "expected": "",
            "playwright_script": code or (
                f"await page.getByLabel('{_js_string(field)}').fill('{_js_string(value)}');"
            ),
        }
    elif re.search(r"\b(click|press|tap)\b", lower):
        target = _target(line, r"click|press|tap")
        step = {
            "action": f"Click {target}",
            "data": "",
            "expected": "",
            "playwright_script": code or f"await page.getByText('{_js_string(target)}').click();",
        }
    elif re.search(r"\b(select|choose)\b", lower):
        target = _target(line, r"select|choose")
        step = {
            "action": f"Select {target}",
            "data": target,
            "expected": "",
            "playwright_script": code or (
                f"await page.getByRole('option', {{ name: '{_js_string(target)}' }}).click();"
            ),
        }
    elif re.search(r"\b(expect|verify|assert|should|see|check)\b", lower):
        target = _target(line, r"expect|verify that|verify|assert|should see|should|see|check")
        step = {
            "action": f"Verify {target}",
            "data": "",
            "expected": f"{target} is visible",
            "playwright_script": code or (
                f"await expect(page.getByText('{_js_string(target)}')).toBeVisible();"
            ),
        }
    else:
        step = {
            "action": line,
            "data": "",
            "expected": "",
            "playwright_script": code or "",
        }
    step["source"] = "heuristic"
    return step


# ═════════════════════════════════════════════════════════════════════════════
# Importer
# ═════════════════════════════════════════════════════════════════════════════

class StepImporter:
    """Turns free text or Playwright code lines into step payloads."""

    def __init__(self, gateway=None):
        self.gateway = gateway

    def _gateway(self):
        return self.gateway or get_gateway()

    def _complete(self, template, **variables):
        """One provider call; returns the reply text or None on any failure."""
        messages = prompts.render(template, **variables)
        try:
            result = self._gateway().chat(messages)
        except ExternalServiceError as e:
            logger.warning("AI %s call failed: %s", template, e)
            return None
        return (result.get("content") or "").strip() or None

    @staticmethod
    def clean_lines(lines):
        return [str(line).strip() for line in lines if line is not None and str(line).strip()]

    @staticmethod
    def _from_item(item, line):
        if not isinstance(item, dict):
            return None
        action = item.get("action")
        if not isinstance(action, str) or not action.strip() or action.strip() == "N/A":
            return None

        def text(key):
            value = item.get(key)
            return value.strip() if isinstance(value, str) else ""

        code = text("playwrightCode") or text("playwright_script")
        if not code:
            code = line
        return {
            "action": action.strip(),
            "data": text("data"),
            "expected": text("expected"),
            "playwright_script": code,
            "source": "ai",
        }

    def generate_steps(self, lines):
        """Return one step dict per non-empty input line, in input order."""
        lines = self.clean_lines(lines)
        if not lines:
            return []

        numbered = "\n".join(f'{i + 1}. "{line}"' for i, line in enumerate(lines))
        reply = self._complete("generate_steps", numbered_lines=numbered, count=len(lines))
        parsed = extract_json_from_text(reply) if reply else None
        if isinstance(parsed, dict):
            parsed = [parsed]
        if not isinstance(parsed, list):
            parsed = []

        steps, fallbacks = [], 0
        for index, line in enumerate(lines):
            item = parsed[index] if index < len(parsed) else None
            step = self._from_item(item, line)
            if step is None:
                step = heuristic_step(line)
                fallbacks += 1
            steps.append(step)

        if fallbacks:
            logger.info("AI step import: %d of %d lines used keyword fallback", fallbacks, len(lines))
        return steps

    def fix_test_case_name(self, name):
        """Provider-polished name, or the original on any failure."""
        reply = self._complete("fix_test_case_name", name=name)
        if not reply:
            return name
        fixed = reply.splitlines()[0].strip().strip("\"'`").strip()
        return fixed or name

    def fix_step_text(self, fields):
        """Fix each non-empty text field independently; failures keep the input."""
        fixed = {}
        for key in ("action", "data", "expected"):
            value = fields.get(key)
            if not isinstance(value, str) or not value.strip():
                fixed[key] = value
                continue
            reply = self._complete("fix_step_text", text=value)
            fixed[key] = reply.strip("\"'`").strip() if reply else value
        return fixed
