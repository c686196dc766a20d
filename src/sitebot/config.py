"""Sitebot configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (SITEBOT_API_KEY / OPENAI_API_KEY, SITEBOT_CHAT_MODEL,
     SITEBOT_EMBEDDING_MODEL, SITEBOT_SOURCES)
  3. Per-project sitebot.yaml
  4. Global ~/.sitebot/config.yaml
  5. Hardcoded defaults

Config files must never contain credentials; the API key is read from the
environment only. Numeric generation settings are clamped at load time.
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import urllib.parse
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".sitebot"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "sitebot.yaml"

# Does NOT match legitimate keys like max_tokens or max_page_chars.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["site", "chat", "embedding", "sources", "cache", "context", "storage", "server"]
)

TEMPERATURE_RANGE: tuple[float, float] = (0.0, 2.0)
MAX_TOKENS_RANGE: tuple[int, int] = (100, 4000)
ANSWER_LEVELS: frozenset[str] = frozenset(["essential", "detailed"])
SIDEBAR_POSITIONS: frozenset[str] = frozenset(["left", "right"])
CONTEXT_STRATEGIES: frozenset[str] = frozenset(["cache", "index"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class SiteCfg:
    """The site the assistant answers for (sitebot.yaml: site:).

    Attributes:
        name: Site name shown in the system prompt and context header.
        url: Public site URL shown in the context header.
        language: Language the assistant must answer in.
        instructions: Owner-written instructions appended to the system prompt.
        answer_level: 'essential' (short answers) or 'detailed'.
    """

    name: str = ""
    url: str = ""
    language: str = "English"
    instructions: str = ""
    answer_level: str = "essential"


@dataclass
class ChatCfg:
    """Chat-completion settings (sitebot.yaml: chat:)."""

    model: str = "gpt-4o"
    base_url: str = "https://api.openai.com/v1"
    max_tokens: int = 1000
    temperature: float = 0.7
    timeout: float = 90.0


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (sitebot.yaml: embedding:)."""

    model: str = "text-embedding-3-small"
    dimensions: int = 1536
    timeout: float = 120.0
    batch_size: int = 2048


@dataclass
class SourcesCfg:
    """Upstream content sources (sitebot.yaml: sources:).

    Attributes:
        urls: Normalised REST base URLs (``https://example.org/wp-json/wp/v2``).
        per_page: Page size requested from each source.
        timeout: Per-request timeout in seconds.
        max_page_chars: Per-page cleaned-content ceiling in the context blob.
    """

    urls: list[str] = field(default_factory=list)
    per_page: int = 100
    timeout: float = 30.0
    max_page_chars: int = 15_000


@dataclass
class CacheCfg:
    """Context cache policy (sitebot.yaml: cache:)."""

    ttl_seconds: int = 3600
    min_chars: int = 500  # smaller blobs are served but never cached


@dataclass
class ContextCfg:
    """Context budget (sitebot.yaml: context:)."""

    max_tokens: int = 60_000
    strategy: str = "cache"  # "cache" (live fetch, TTL) or "index" (persisted files)


@dataclass
class StorageCfg:
    """Conversation database and uploaded image storage (sitebot.yaml: storage:)."""

    db_path: str = "sitebot.db"
    image_dir: str = "sitebot-images"
    index_dir: str = "sitebot-index"
    image_base_url: str = "/images"
    image_ttl_hours: int = 24
    max_image_bytes: int = 5 * 1024 * 1024
    max_image_dimension: int = 1920


@dataclass
class ServerCfg:
    """REST server settings (sitebot.yaml: server:)."""

    host: str = "127.0.0.1"
    port: int = 8000
    admin_users: list[int] = field(default_factory=list)
    sidebar_position: str = "right"


@dataclass
class SitebotConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    site: SiteCfg = field(default_factory=SiteCfg)
    chat: ChatCfg = field(default_factory=ChatCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    sources: SourcesCfg = field(default_factory=SourcesCfg)
    cache: CacheCfg = field(default_factory=CacheCfg)
    context: ContextCfg = field(default_factory=ContextCfg)
    storage: StorageCfg = field(default_factory=StorageCfg)
    server: ServerCfg = field(default_factory=ServerCfg)
    api_key: str | None = field(default=None, repr=False)

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def normalize_source_url(url: str) -> str:
    """Return the REST base for *url*: trimmed, no trailing slash or ``/pages``.

    Raises:
        ConfigError: If the URL is not http(s).
    """
    url = url.strip().rstrip("/")
    if url.endswith("/pages"):
        url = url[: -len("/pages")]
    scheme = urllib.parse.urlparse(url).scheme
    if scheme not in ("http", "https"):
        raise ConfigError(
            f"Content source must be an http(s) URL, got: '{url}'\n"
            "  Example:  sources.urls: [https://example.org/wp-json/wp/v2]"
        )
    return url


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export SITEBOT_API_KEY=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _read_yaml(path: Path) -> dict[str, Any]:
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config '{path}' must be a YAML mapping at the top level.")
    return raw


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> SitebotConfig:
    """Build a *SitebotConfig* from a merged raw YAML dict, clamping as it goes."""
    cfg = SitebotConfig()

    if "site" in data:
        s = data["site"] or {}
        level = str(s.get("answer_level", cfg.site.answer_level)).lower()
        cfg.site = SiteCfg(
            name=str(s.get("name", cfg.site.name)),
            url=str(s.get("url", cfg.site.url)),
            language=str(s.get("language", cfg.site.language)),
            instructions=str(s.get("instructions") or ""),
            answer_level=level if level in ANSWER_LEVELS else "essential",
        )

    if "chat" in data:
        c = data["chat"] or {}
        cfg.chat = ChatCfg(
            model=str(c.get("model", cfg.chat.model)),
            base_url=str(c.get("base_url", cfg.chat.base_url)).rstrip("/"),
            max_tokens=int(
                clamp(int(c.get("max_tokens", cfg.chat.max_tokens)), *MAX_TOKENS_RANGE)
            ),
            temperature=float(
                clamp(float(c.get("temperature", cfg.chat.temperature)), *TEMPERATURE_RANGE)
            ),
            timeout=float(c.get("timeout", cfg.chat.timeout)),
        )

    if "embedding" in data:
        e = data["embedding"] or {}
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            timeout=float(e.get("timeout", cfg.embedding.timeout)),
            batch_size=max(1, min(2048, int(e.get("batch_size", cfg.embedding.batch_size)))),
        )

    if "sources" in data:
        src = data["sources"] or {}
        cfg.sources = SourcesCfg(
            urls=[normalize_source_url(str(u)) for u in src.get("urls") or []],
            per_page=max(1, min(100, int(src.get("per_page", cfg.sources.per_page)))),
            timeout=float(src.get("timeout", cfg.sources.timeout)),
            max_page_chars=int(src.get("max_page_chars", cfg.sources.max_page_chars)),
        )

    if "cache" in data:
        ca = data["cache"] or {}
        cfg.cache = CacheCfg(
            ttl_seconds=max(0, int(ca.get("ttl_seconds", cfg.cache.ttl_seconds))),
            min_chars=max(0, int(ca.get("min_chars", cfg.cache.min_chars))),
        )

    if "context" in data:
        cx = data["context"] or {}
        strategy = str(cx.get("strategy", cfg.context.strategy)).lower()
        cfg.context = ContextCfg(
            max_tokens=max(1, int(cx.get("max_tokens", cfg.context.max_tokens))),
            strategy=strategy if strategy in CONTEXT_STRATEGIES else "cache",
        )

    if "storage" in data:
        st = data["storage"] or {}
        cfg.storage = StorageCfg(
            db_path=str(st.get("db_path", cfg.storage.db_path)),
            image_dir=str(st.get("image_dir", cfg.storage.image_dir)),
            index_dir=str(st.get("index_dir", cfg.storage.index_dir)),
            image_base_url=str(st.get("image_base_url", cfg.storage.image_base_url)).rstrip("/"),
            image_ttl_hours=int(st.get("image_ttl_hours", cfg.storage.image_ttl_hours)),
            max_image_bytes=int(st.get("max_image_bytes", cfg.storage.max_image_bytes)),
            max_image_dimension=int(
                st.get("max_image_dimension", cfg.storage.max_image_dimension)
            ),
        )

    if "server" in data:
        sv = data["server"] or {}
        position = str(sv.get("sidebar_position", cfg.server.sidebar_position)).lower()
        cfg.server = ServerCfg(
            host=str(sv.get("host", cfg.server.host)),
            port=int(sv.get("port", cfg.server.port)),
            admin_users=[int(u) for u in sv.get("admin_users") or []],
            sidebar_position=position if position in SIDEBAR_POSITIONS else "right",
        )

    return cfg


def _apply_env_overrides(cfg: SitebotConfig) -> SitebotConfig:
    """Apply SITEBOT_* environment variable overrides (layer 2)."""
    cfg.api_key = os.environ.get("SITEBOT_API_KEY") or os.environ.get("OPENAI_API_KEY") or None
    if model := os.environ.get("SITEBOT_CHAT_MODEL"):
        cfg.chat.model = model
    if model := os.environ.get("SITEBOT_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if sources := os.environ.get("SITEBOT_SOURCES"):
        cfg.sources.urls = [
            normalize_source_url(u) for u in sources.split(",") if u.strip()
        ]
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> SitebotConfig:
    """Load and return a merged *SitebotConfig*.

    Applies layers in order: global → per-project → env vars.

    Args:
        project_dir: Directory to search for *sitebot.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If any config file contains API-key-like fields, is not a
            mapping, or lists a non-http(s) content source.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    for path in (global_path, search_dir / _PROJECT_CONFIG_NAME):
        if path.exists():
            raw = _read_yaml(path)
            _check_no_api_keys(raw, path)
            _warn_unknown_keys(raw, path)
            merged = _deep_merge(merged, raw)

    cfg = _cfg_from_dict(merged)
    return _apply_env_overrides(cfg)


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.sitebot/config.yaml`` with defaults if it does not exist.

    The directory is created with mode 0o700 and the file with mode 0o600.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# Sitebot global configuration: defaults only.\n"
            "# NEVER store API keys here, use environment variables:\n"
            "#   export SITEBOT_API_KEY=sk-...\n"
            "\n"
            "chat:\n"
            "  model: gpt-4o\n"
            "  max_tokens: 1000\n"
            "  temperature: 0.7\n"
            "\n"
            "embedding:\n"
            "  model: text-embedding-3-small\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
