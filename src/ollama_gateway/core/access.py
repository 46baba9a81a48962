"""Project / API-key access checks for the generation endpoint.

The gateway only needs a narrow view of project administration: given a
caller-supplied API key (and optionally the requested model), decide whether
the call may proceed.  :class:`AccessPolicy` is that interface;
:class:`ProjectRegistry` implements it on top of a single ``projects.json``
file so no database is required.

File format::

    {
      "projects": [
        {
          "id": 1,
          "name": "demo",
          "api_key": "sk-demo",
          "is_active": true,
          "models": ["llama3", "llava"]
        }
      ]
    }

The file is re-read on every lookup, so edits made by an operator take
effect without restarting the server.  A missing or unreadable file yields
an empty registry (every key is then unauthorized).
"""

from __future__ import annotations

import json
import logging
import secrets
from enum import Enum
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ollama_gateway.core.errors import AuthError, AuthorizationError

logger = logging.getLogger(__name__)


class AccessDecision(str, Enum):
    """Outcome of an access check."""

    ALLOWED = "allowed"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN_INACTIVE = "forbidden_inactive"
    FORBIDDEN_MODEL_NOT_ASSIGNED = "forbidden_model_not_assigned"


class Project(BaseModel):
    """A tenant allowed to call the generation endpoint.

    Fields are coerced the way they are written by hand in ``projects.json``:
    ``"7"`` is a valid ``id`` and ``"false"``, ``"no"`` or ``0`` turn
    ``is_active`` off.
    """

    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: int
    name: str = ""
    api_key: str = Field(..., min_length=1)
    is_active: bool = True
    models: list[str] = Field(default_factory=list)

    def allows_model(self, model: str) -> bool:
        return model in self.models


class AccessPolicy(Protocol):
    def lookup(self, api_key: str) -> Project | None: ...

    def check(self, api_key: str, model: str | None = None) -> AccessDecision: ...


def authorize(project: Project | None, model: str | None = None) -> AccessDecision:
    """Decide whether an already looked-up project may generate with ``model``.

    When ``model`` is ``None`` only the project's existence and status are
    checked.
    """
    if project is None:
        return AccessDecision.UNAUTHORIZED
    if not project.is_active:
        return AccessDecision.FORBIDDEN_INACTIVE
    if model is not None and not project.allows_model(model):
        return AccessDecision.FORBIDDEN_MODEL_NOT_ASSIGNED
    return AccessDecision.ALLOWED


class ProjectRegistry:
    """File-backed :class:`AccessPolicy`.

    Args:
        path: Location of ``projects.json``.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> list[Project]:
        """Read every well-formed project from disk.

        Entries that fail validation (e.g. a non-numeric ``id``) are logged
        and skipped; the rest still load.
        """
        if not self.path.exists():
            return []
        try:
            with open(self.path, encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, ValueError) as exc:
            logger.error(f"Failed to read project registry {self.path}: {exc}")
            return []

        entries = raw.get("projects", []) if isinstance(raw, dict) else raw
        if not isinstance(entries, list):
            return []

        projects: list[Project] = []
        for position, entry in enumerate(entries, start=1):
            # Entries without an API key can never match a caller.
            if not isinstance(entry, dict) or not entry.get("api_key"):
                continue
            try:
                projects.append(Project.model_validate({"id": len(projects) + 1, **entry}))
            except PydanticValidationError as exc:
                fields = ", ".join(str(error["loc"][0]) for error in exc.errors() if error["loc"])
                logger.warning(f"Skipping project entry {position} in {self.path}: invalid {fields}")
        return projects

    def save(self, projects: list[Project]) -> None:
        """Persist projects back to disk."""
        data = {"projects": [project.model_dump() for project in projects]}
        with open(self.path, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)

    def lookup(self, api_key: str) -> Project | None:
        """Return the project owning ``api_key``, or ``None``."""
        if not api_key:
            return None
        for project in self.load():
            if secrets.compare_digest(project.api_key.encode(), api_key.encode()):
                return project
        return None

    def check(self, api_key: str, model: str | None = None) -> AccessDecision:
        """Decide whether ``api_key`` may generate with ``model``.

        When ``model`` is ``None`` only the key and the project status are
        checked.
        """
        return authorize(self.lookup(api_key), model)


def raise_for_decision(decision: AccessDecision, model: str | None = None) -> None:
    """Translate a non-allowed decision into the matching gateway error.

    Raises:
        AuthError: For ``UNAUTHORIZED``.
        AuthorizationError: For either ``FORBIDDEN_*`` decision.
    """
    if decision is AccessDecision.ALLOWED:
        return
    if decision is AccessDecision.UNAUTHORIZED:
        raise AuthError("Project not found with the provided API key")
    if decision is AccessDecision.FORBIDDEN_INACTIVE:
        raise AuthorizationError(
            "This project is currently inactive and cannot use the API",
            title="Project inactive",
        )
    raise AuthorizationError(
        f"Model '{model}' is not assigned to this project",
        title="Model not available",
    )
