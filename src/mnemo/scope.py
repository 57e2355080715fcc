"""Scope identities: hashed, deterministic ids for user and project scopes.

The raw signals (git email, login name, working directory) never leave the
process; only their truncated SHA-256 digests are sent to the backend.
"""

from __future__ import annotations

import hashlib
import logging
import os
import subprocess
from dataclasses import dataclass

logger = logging.getLogger(__name__)

ANONYMOUS = "anonymous"
SCOPE_DELIMITER = ":"


@dataclass(frozen=True)
class ScopeContext:
    """Owner of a memory partition. No project_id means user (cross-project) scope."""

    user_id: str
    project_id: str | None = None

    @property
    def kind(self) -> str:
        return "project" if self.project_id else "user"


@dataclass(frozen=True)
class Scopes:
    user: ScopeContext
    project: ScopeContext


def _hash(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()[:16]


def get_git_email() -> str | None:
    try:
        result = subprocess.run(
            ["git", "config", "user.email"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    email = result.stdout.strip()
    return email or None


def get_user_id() -> str:
    """Hash of git email, else $USER / $USERNAME, else a fixed anonymous token."""
    email = get_git_email()
    if email:
        return _hash(email)
    fallback = os.getenv("USER") or os.getenv("USERNAME") or ANONYMOUS
    return _hash(fallback)


def get_project_id(directory: str) -> str:
    return _hash(directory)


def get_scopes(directory: str) -> Scopes:
    user_id = get_user_id()
    project_id = get_project_id(directory)
    logger.debug("Resolved scopes user=%s project=%s", user_id, project_id)
    return Scopes(
        user=ScopeContext(user_id=user_id),
        project=ScopeContext(user_id=user_id, project_id=project_id),
    )


def scope_key(scope: ScopeContext, prefix: str) -> str:
    """Compose the single backend-visible identifier for a scope.

    User and project scopes differ in segment count, so they never collide in
    the backend's flat user_id namespace.
    """
    parts = [prefix, scope.user_id]
    if scope.project_id:
        parts.append(scope.project_id)
    return SCOPE_DELIMITER.join(parts)


# ── Legacy tag form ──────────────────────────────────────────


def get_user_tag(prefix: str) -> str:
    return f"{prefix}_user_{get_user_id()}"


def get_project_tag(directory: str, prefix: str) -> str:
    return f"{prefix}_project_{get_project_id(directory)}"
