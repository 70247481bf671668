"""Persistent JSON application config.

Stores configured projects, the active project, translate backend settings,
and the global prompt. Loading is defensive: malformed or missing config
falls back to defaults and invalid fields are dropped.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path

from platformdirs import user_config_dir

from .errors import ConfigError, GitCommandError
from .git_backend import GitRepository
from .models import UPSTREAM_REMOTE, Project
from .upstream import RepoFactory

logger = logging.getLogger(__name__)

APP_NAME = "docsync"
CONFIG_FILENAME = "config.json"
DEFAULT_CONFIG_PATH = Path(user_config_dir(APP_NAME, appauthor=False)) / CONFIG_FILENAME
CONFIG_PATH = DEFAULT_CONFIG_PATH

API_KEY_ENV_VARS = ("DOCSYNC_API_KEY", "OPENAI_API_KEY")
DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "gpt-4"
DEFAULT_WATCH_DIRECTORIES = ("docs", "guides")
DEFAULT_FILE_TYPES = (".md", ".mdx", ".txt")
DEFAULT_PROMPT = (
    "You are a professional technical documentation translator. Translate the "
    "following English document into Chinese. Keep the original formatting and "
    "structure, and make sure technical terms are accurate."
)
PREFERRED_BRANCHES = ("main", "master")


@dataclass
class LLMConfig:
    api_key: str = ""
    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    temperature: float = 0.3
    max_tokens: int = 32000
    concurrency: int = 3

    def resolved_api_key(self) -> str:
        """Configured key, else the first non-empty key from the environment."""
        if self.api_key:
            return self.api_key
        for name in API_KEY_ENV_VARS:
            value = os.environ.get(name, "").strip()
            if value:
                return value
        return ""


@dataclass
class ProjectConfig:
    name: str
    path: str
    origin_url: str = ""
    upstream_url: str = ""
    upstream_branch: str = "main"
    working_branch: str = "main"
    watch_directories: list[str] = field(default_factory=lambda: list(DEFAULT_WATCH_DIRECTORIES))
    file_types: list[str] = field(default_factory=lambda: list(DEFAULT_FILE_TYPES))
    custom_prompt: str | None = None

    def to_project(self) -> Project:
        return Project(
            root=Path(self.path),
            upstream_branch=self.upstream_branch,
            working_branch=self.working_branch,
            watch_directories=tuple(self.watch_directories),
            file_types=tuple(self.file_types),
            custom_prompt=self.custom_prompt,
        )


@dataclass
class AppConfig:
    projects: list[ProjectConfig] = field(default_factory=list)
    active_project: str | None = None
    llm: LLMConfig = field(default_factory=LLMConfig)
    global_prompt: str = ""

    def find_project(self, path: str | Path) -> ProjectConfig | None:
        key = _project_key(path)
        for project in self.projects:
            if project.path == key:
                return project
        return None


def _project_key(path: str | Path) -> str:
    return str(Path(path).expanduser().resolve())


def _coerce_str(value: object, default: str = "") -> str:
    return value if isinstance(value, str) else default


def _coerce_str_list(value: object, default: tuple[str, ...]) -> list[str]:
    if not isinstance(value, list):
        return list(default)
    items = [item.strip() for item in value if isinstance(item, str) and item.strip()]
    return items


def _coerce_number(value: object, default: float, *, minimum: float | None = None) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    if minimum is not None and value < minimum:
        return minimum
    return value


def _llm_from_dict(raw: object) -> LLMConfig:
    if not isinstance(raw, dict):
        return LLMConfig()
    return LLMConfig(
        api_key=_coerce_str(raw.get("api_key")),
        model=_coerce_str(raw.get("model"), DEFAULT_MODEL) or DEFAULT_MODEL,
        base_url=_coerce_str(raw.get("base_url"), DEFAULT_BASE_URL) or DEFAULT_BASE_URL,
        temperature=float(_coerce_number(raw.get("temperature"), 0.3, minimum=0.0)),
        max_tokens=int(_coerce_number(raw.get("max_tokens"), 32000, minimum=1)),
        concurrency=int(_coerce_number(raw.get("concurrency"), 3, minimum=1)),
    )


def _project_from_dict(raw: object) -> ProjectConfig | None:
    if not isinstance(raw, dict):
        return None
    path = raw.get("path")
    if not isinstance(path, str) or not path.strip():
        return None
    custom_prompt = raw.get("custom_prompt")
    return ProjectConfig(
        name=_coerce_str(raw.get("name")) or Path(path).name,
        path=path,
        origin_url=_coerce_str(raw.get("origin_url")),
        upstream_url=_coerce_str(raw.get("upstream_url")),
        upstream_branch=_coerce_str(raw.get("upstream_branch"), "main") or "main",
        working_branch=_coerce_str(raw.get("working_branch"), "main") or "main",
        watch_directories=_coerce_str_list(raw.get("watch_directories"), DEFAULT_WATCH_DIRECTORIES),
        file_types=_coerce_str_list(raw.get("file_types"), DEFAULT_FILE_TYPES),
        custom_prompt=custom_prompt if isinstance(custom_prompt, str) and custom_prompt.strip() else None,
    )


def load_config(path: Path | None = None) -> dict[str, object]:
    """Load the persisted JSON config object.

    Returns an empty dict when the file is missing, unreadable, malformed, or
    does not decode to a top-level JSON object.
    """
    config_path = path or CONFIG_PATH
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, ValueError) as exc:
        logger.warning("ignoring unreadable config %s: %s", config_path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def load_app_config(path: Path | None = None) -> AppConfig:
    data = load_config(path)
    raw_projects = data.get("projects")
    projects: list[ProjectConfig] = []
    seen: set[str] = set()
    for raw in raw_projects if isinstance(raw_projects, list) else []:
        project = _project_from_dict(raw)
        if project is None or project.path in seen:
            continue
        seen.add(project.path)
        projects.append(project)

    active = data.get("active_project")
    if not isinstance(active, str) or active not in seen:
        active = None
    return AppConfig(
        projects=projects,
        active_project=active,
        llm=_llm_from_dict(data.get("llm")),
        global_prompt=_coerce_str(data.get("global_prompt")),
    )


def save_app_config(config: AppConfig, path: Path | None = None) -> None:
    """Persist config as pretty-printed JSON; write failures are logged."""
    config_path = path or CONFIG_PATH
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(json.dumps(asdict(config), indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    except OSError as exc:
        logger.error("saving config %s failed: %s", config_path, exc)


def resolve_prompt(config: AppConfig, project: ProjectConfig | Project | None = None) -> str:
    """Project custom prompt, else the global prompt, else the built-in default."""
    if project is not None and project.custom_prompt:
        return project.custom_prompt
    return config.global_prompt or DEFAULT_PROMPT


def _pick_branch(branches: list[str], fallback: str) -> str:
    for preferred in PREFERRED_BRANCHES:
        if preferred in branches:
            return preferred
    return branches[0] if branches else fallback


async def add_project(
    config: AppConfig,
    path: str | Path,
    *,
    name: str | None = None,
    repo_for: RepoFactory = GitRepository,
) -> ProjectConfig:
    """Register the repository at ``path``, detecting remotes and default branches."""
    key = _project_key(path)
    if config.find_project(key) is not None:
        raise ConfigError(f"project already configured: {key}")
    if not Path(key).is_dir():
        raise ConfigError(f"not a directory: {key}")

    repo = repo_for(Path(key))
    remotes = {remote.name: remote.url for remote in await repo.list_remotes()}
    upstream_branches: list[str] = []
    if UPSTREAM_REMOTE in remotes:
        try:
            upstream_branches = await repo.list_remote_branches(UPSTREAM_REMOTE)
        except GitCommandError as exc:
            logger.warning("listing upstream branches in %s failed: %s", key, exc)
    local_branches = await repo.list_local_branches()
    if not local_branches:
        try:
            local_branches = [await repo.current_branch()]
        except GitCommandError:
            local_branches = []

    project = ProjectConfig(
        name=name or Path(key).name,
        path=key,
        origin_url=remotes.get("origin", ""),
        upstream_url=remotes.get(UPSTREAM_REMOTE, ""),
        upstream_branch=_pick_branch(upstream_branches, "main"),
        working_branch=_pick_branch([branch for branch in local_branches if branch], "main"),
    )
    config.projects.append(project)
    if config.active_project is None:
        config.active_project = key
    logger.info("added project %s (%s)", project.name, key)
    return project


def update_project(config: AppConfig, path: str | Path, **changes: object) -> ProjectConfig:
    """Replace fields of a configured project; ``path`` itself cannot change."""
    current = config.find_project(path)
    if current is None:
        raise ConfigError(f"unknown project: {path}")
    if "path" in changes:
        raise ConfigError("project path cannot be changed")
    updated = replace(current, **changes)
    config.projects[config.projects.index(current)] = updated
    return updated


def remove_project(config: AppConfig, path: str | Path) -> None:
    current = config.find_project(path)
    if current is None:
        raise ConfigError(f"unknown project: {path}")
    config.projects.remove(current)
    if config.active_project == current.path:
        config.active_project = None


def set_active_project(config: AppConfig, path: str | Path) -> ProjectConfig:
    current = config.find_project(path)
    if current is None:
        raise ConfigError(f"unknown project: {path}")
    config.active_project = current.path
    return current


def get_active_project(config: AppConfig) -> ProjectConfig | None:
    if config.active_project is None:
        return None
    return config.find_project(config.active_project)


__all__ = [
    "APP_NAME",
    "CONFIG_PATH",
    "DEFAULT_PROMPT",
    "AppConfig",
    "LLMConfig",
    "ProjectConfig",
    "load_config",
    "load_app_config",
    "save_app_config",
    "resolve_prompt",
    "add_project",
    "update_project",
    "remove_project",
    "set_active_project",
    "get_active_project",
]
