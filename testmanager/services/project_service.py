"""Project CRUD and Playwright configuration validation."""
import logging

from testmanager.core.exceptions import ConflictError, ValidationError
from testmanager.models import db
from testmanager.models.project import DEFAULT_PLAYWRIGHT_CONFIG, PROJECT_ENVIRONMENTS, Project
from testmanager.services import playwright_service

logger = logging.getLogger(__name__)

_INT_OPTIONS = ("timeout", "retries", "workers")


def validate_playwright_config(value):
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError("playwright_config must be an object")
    unknown = sorted(set(value) - set(DEFAULT_PLAYWRIGHT_CONFIG))
    if unknown:
        raise ValidationError("Unknown playwright_config keys", details={"keys": unknown})

    cleaned = dict(value)
    browser = cleaned.get("browser")
    if browser is not None and browser not in playwright_service.BROWSERS:
        raise ValidationError(
            f"browser must be one of: {', '.join(playwright_service.BROWSERS)}",
            details={"browser": browser},
        )
    for key in _INT_OPTIONS:
        if cleaned.get(key) is None:
            continue
        try:
            number = int(cleaned[key])
        except (TypeError, ValueError):
            raise ValidationError(f"{key} must be an integer", details={key: cleaned[key]})
        if number < 0:
            raise ValidationError(f"{key} must not be negative", details={key: number})
        cleaned[key] = number
    if "headless" in cleaned:
        cleaned["headless"] = bool(cleaned["headless"])
    return cleaned


def _validate_environment(value):
    if value not in PROJECT_ENVIRONMENTS:
        raise ValidationError(
            f"environment must be one of: {', '.join(sorted(PROJECT_ENVIRONMENTS))}",
            details={"environment": value},
        )
    return value


def create_project(data, *, actor="system"):
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    if Project.query.filter_by(name=name).first():
        raise ConflictError("Project", "name", name)

    project = Project(
        name=name,
        url=(data.get("url") or "").strip(),
        environment=_validate_environment(data.get("environment") or "development"),
        description=data.get("description") or "",
        playwright_project_path=(data.get("playwright_project_path") or "").strip() or None,
        playwright_config=validate_playwright_config(data.get("playwright_config")),
        created_by=actor,
        updated_by=actor,
    )
    db.session.add(project)
    db.session.flush()

    if data.get("init_playwright"):
        init_playwright(project)
    logger.info("Created project %s (%s)", project.id, project.name)
    return project


def init_playwright(project):
    try:
        playwright_service.init_project_layout(project)
    except OSError as exc:
        logger.error("Playwright folder for project %s failed: %s", project.id, exc)
        raise ValidationError("Could not create the Playwright project folder")
    db.session.flush()
    return project


def update_project(project, data, *, actor="system"):
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("name is required", details={"name": "required"})
        clash = Project.query.filter(Project.name == name, Project.id != project.id).first()
        if clash:
            raise ConflictError("Project", "name", name)
        project.name = name
    if "url" in data:
        project.url = (data.get("url") or "").strip()
    if "environment" in data:
        project.environment = _validate_environment(data["environment"])
    if "description" in data:
        project.description = data.get("description") or ""
    if "playwright_project_path" in data:
        project.playwright_project_path = (data.get("playwright_project_path") or "").strip() or None
    if "playwright_config" in data:
        merged = dict(project.playwright_config or {})
        merged.update(validate_playwright_config(data["playwright_config"]))
        project.playwright_config = merged
    project.updated_by = actor
    db.session.flush()
    return project


def delete_project(project):
    db.session.delete(project)
    db.session.flush()
