"""Playwright project files and runner commands.

Each project may be backed by a folder under PLAYWRIGHT_PROJECTS_ROOT:

    <root>/<project slug>/
        tests/<test case slug>.spec.ts
        fixtures/<fixture slug>.fixture.ts
        fixtures/index.ts            one export line per fixture

Files are regenerated from the database after every step mutation. When a
project has no folder configured nothing is written; the database stays the
source of truth.
"""
import logging
import os
import re
import shlex

from flask import current_app

logger = logging.getLogger(__name__)

FIXTURES_INDEX_HEADER = "// Fixtures export file\n"
BROWSERS = ("chromium", "firefox", "webkit")


# ── Naming ───────────────────────────────────────────────────────────────────

def slugify(name):
    """'Login Flow #2' -> 'login-flow-2'."""
    slug = re.sub(r"[^a-z0-9]+", "-", (name or "").lower()).strip("-")
    return slug or "test"


def camel_case_export_name(name):
    """'Logged in user' -> 'loggedInUser'; leading digits are prefixed."""
    words = [w for w in re.split(r"[^A-Za-z0-9]+", name or "") if w]
    if not words:
        return "fixture"
    head, tail = words[0].lower(), [w[:1].upper() + w[1:].lower() for w in words[1:]]
    export_name = head + "".join(tail)
    if export_name[0].isdigit():
        export_name = "fixture" + export_name[0].upper() + export_name[1:]
    return export_name


def test_file_name(test_case):
    return f"{slugify(test_case.name)}.spec.ts"


def fixture_file_name(fixture):
    return f"{slugify(fixture.name)}.fixture.ts"


# ── Project folder ───────────────────────────────────────────────────────────

def project_root(project):
    """Absolute folder for a project, or None if it has none."""
    if not project.playwright_project_path:
        return None
    base = current_app.config["PLAYWRIGHT_PROJECTS_ROOT"]
    return os.path.abspath(os.path.join(base, project.playwright_project_path))


def init_project_layout(project):
    """Create tests/ and fixtures/index.ts for a project; returns the folder."""
    if not project.playwright_project_path:
        project.playwright_project_path = slugify(project.name)
    root = project_root(project)
    os.makedirs(os.path.join(root, "tests"), exist_ok=True)
    os.makedirs(os.path.join(root, "fixtures"), exist_ok=True)
    index_path = os.path.join(root, "fixtures", "index.ts")
    if not os.path.exists(index_path):
        with open(index_path, "w", encoding="utf-8") as fh:
            fh.write(FIXTURES_INDEX_HEADER)
    logger.info("Initialised Playwright folder for project %s at %s", project.id, root)
    return root


# ═════════════════════════════════════════════════════════════════════════════
# Rendering
# ═════════════════════════════════════════════════════════════════════════════

def _indent(lines, prefix="    "):
    return [f"{prefix}{line}" if line else "" for line in lines]


def render_step_lines(steps):
    """Body lines for an ordered step list; disabled steps are commented out."""
    lines = []
    for index, step in enumerate(steps):
        lines.append(f"// Step {index + 1}: {step.action}")
        if step.fixture_ref is not None:
            body = [f"// Uses fixture: {step.fixture_ref.name}"]
        else:
            body = []
        script = (step.playwright_script or "").strip()
        body.extend(script.splitlines() if script else ["// TODO: Implement this step"])
        if step.expected:
            body.append(f"// Expected: {step.expected}")

        if step.disabled:
            lines.append("/* DISABLED STEP")
            lines.extend(body)
            lines.append("*/")
        else:
            lines.extend(body)
        lines.append("")
    return lines[:-1] if lines else lines


def render_fixture_content(fixture, steps):
    """Implementation body of a fixture; a placeholder when it has no steps."""
    if not steps:
        if fixture.playwright_script:
            return fixture.playwright_script
        return "// Add your fixture implementation here"
    return "\n".join(render_step_lines(steps))


def render_fixture_file(fixture, steps):
    export_name = fixture.export_name or camel_case_export_name(fixture.name)
    body = _indent(render_fixture_content(fixture, steps).splitlines(), "    ")
    if fixture.type == "inline":
        lines = [
            "import { test as base, Page } from '@playwright/test';",
            "",
            f"// {fixture.name}",
            f"export async function {export_name}(page: Page) {{",
            *_indent(render_fixture_content(fixture, steps).splitlines(), "  "),
            "}",
            "",
            "export const test = base;",
            "",
        ]
    else:
        lines = [
            "import { test as base } from '@playwright/test';",
            "",
            f"// {fixture.name}",
            f"export const test = base.extend<{{ {export_name}: void }}>({{",
            f"  {export_name}: async ({{ page }}, use) => {{",
            *body,
            "    await use();",
            "  },",
            "});",
            "",
        ]
    return "\n".join(lines)


def render_test_file(test_case, steps):
    fixtures = []
    for step in steps:
        ref = step.fixture_ref
        if ref is not None and ref not in fixtures:
            fixtures.append(ref)

    lines = ["import { test, expect } from '@playwright/test';"]
    for ref in fixtures:
        export_name = ref.export_name or camel_case_export_name(ref.name)
        lines.append(f"import {{ {export_name} }} from '../fixtures';")
    lines.append("")

    tags = ", ".join(f"'@{t}'" for t in test_case.tag_list)
    title = test_case.name.replace("'", "\\'")
    if tags:
        lines.append(f"test('{title}', {{ tag: [{tags}] }}, async ({{ page }}) => {{")
    else:
        lines.append(f"test('{title}', async ({{ page }}) => {{")
    lines.extend(_indent(render_step_lines(steps), "  "))
    lines.extend(["});", ""])
    return "\n".join(lines)


# ═════════════════════════════════════════════════════════════════════════════
# Writing
# ═════════════════════════════════════════════════════════════════════════════

def _write(path, content):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(content)


def write_test_file(test_case):
    """Regenerate tests/<slug>.spec.ts; returns the project-relative path or None."""
    root = project_root(test_case.project)
    if root is None:
        return None
    relative = f"tests/{test_file_name(test_case)}"
    _write(os.path.join(root, relative), render_test_file(test_case, test_case.ordered_steps()))
    test_case.test_file_path = relative
    return relative


def _append_fixture_export(root, fixture):
    index_path = os.path.join(root, "fixtures", "index.ts")
    content = FIXTURES_INDEX_HEADER
    if os.path.exists(index_path):
        with open(index_path, encoding="utf-8") as fh:
            content = fh.read()
    module = "./" + fixture_file_name(fixture)[: -len(".ts")]
    export_line = f"export {{ test as {fixture.export_name} }} from '{module}';\n"
    if export_line not in content:
        if content and not content.endswith("\n"):
            content += "\n"
        _write(index_path, content + export_line)


def write_fixture_file(fixture):
    """Regenerate fixtures/<slug>.fixture.ts and register it in fixtures/index.ts."""
    root = project_root(fixture.project)
    if root is None:
        return None
    if not fixture.export_name:
        fixture.export_name = camel_case_export_name(fixture.name)
    filename = fixture_file_name(fixture)
    relative = f"fixtures/{filename}"
    _write(os.path.join(root, relative), render_fixture_file(fixture, fixture.ordered_steps()))
    _append_fixture_export(root, fixture)
    fixture.filename = filename
    fixture.fixture_file_path = relative
    return relative


def sync_parent_file(parent):
    """Best-effort regeneration after a mutation; disk errors are logged, not raised."""
    writer = write_fixture_file if parent.KIND == "fixture" else write_test_file
    try:
        return writer(parent)
    except OSError as exc:
        logger.warning("Could not write Playwright file for %s %s: %s", parent.KIND, parent.id, exc)
        return None


def parent_file_path(parent):
    return parent.fixture_file_path if parent.KIND == "fixture" else parent.test_file_path


def resync_parent_file(parent, old_relative):
    """Regenerate the file; drop old_relative only if the new write landed elsewhere."""
    new_relative = sync_parent_file(parent)
    if old_relative and new_relative and new_relative != old_relative:
        remove_parent_file(parent, old_relative)
    return new_relative


def remove_parent_file(parent, relative=None):
    root = project_root(parent.project)
    relative = relative or parent_file_path(parent)
    if root is None or not relative:
        return
    try:
        os.remove(os.path.join(root, relative))
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove %s: %s", relative, exc)


# ═════════════════════════════════════════════════════════════════════════════
# Runner command
# ═════════════════════════════════════════════════════════════════════════════

def build_command(paths=None, *, browser="chromium", headed=False, config=None):
    """Shell command for `npx playwright test`.

    paths:  list of spec paths relative to the project folder; empty runs all
    config: effective project config (timeout, retries, workers, base_url)
    """
    config = config or {}
    parts = ["npx", "playwright", "test"]
    parts.extend(shlex.quote(p) for p in (paths or []))
    parts.append(f"--project={shlex.quote(browser or 'chromium')}")
    if headed:
        parts.append("--headed")
    for option in ("timeout", "retries", "workers"):
        value = config.get(option)
        if value is not None and value != "":
            parts.append(f"--{option}={int(value)}")
    parts.append("--reporter=json")

    command = " ".join(parts)
    base_url = config.get("base_url")
    if base_url:
        command = f"BASE_URL={shlex.quote(base_url)} {command}"
    return command
