"""sitebot init — scaffold a project directory.

Creates:
  sitebot.yaml             — project config (site, sources, storage)
  sitebot.db               — empty conversation database with schema
  ~/.sitebot/config.yaml   — global model config (created once, mode 0o600)

An existing sitebot.yaml is left untouched; the database is migrated in place.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer

from sitebot.cli.common import console, open_db
from sitebot.cli.errors import err_config
from sitebot.config import (
    ConfigError,
    ensure_global_config,
    load_config,
    normalize_source_url,
)

_DEFAULT_PROJECT_DIR = Path(".")
_PROJECT_CONFIG_NAME = "sitebot.yaml"


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = _DEFAULT_PROJECT_DIR,
    name: Annotated[str, typer.Option("--name", help="Site name shown to visitors.")] = "",
    url: Annotated[str, typer.Option("--url", help="Public site URL.")] = "",
    sources: Annotated[
        Optional[list[str]],
        typer.Option("--source", "-s", help="WordPress REST base (repeatable)."),
    ] = None,
) -> None:
    """Create sitebot.yaml, the conversation database and the global config."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)

    try:
        source_urls = [normalize_source_url(s) for s in sources or []]
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)

    console.print(f"\n[bold]Creating scaffold in {project_dir} …[/]\n")

    config_path = project_dir / _PROJECT_CONFIG_NAME
    if config_path.exists():
        console.print(f"  [yellow]⚠[/]  {_PROJECT_CONFIG_NAME} already exists, left unchanged.")
    else:
        _create_sitebot_yaml(config_path, name, url, source_urls)

    cfg_path = ensure_global_config()
    console.print(f"  [green]✓[/] {cfg_path} (global config)")

    try:
        cfg = load_config(project_dir)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)

    db_path = Path(cfg.storage.db_path)
    if not db_path.is_absolute():
        db_path = project_dir / db_path
    open_db(db_path).close()
    console.print(f"  [green]✓[/] {db_path.name}")

    if cfg.is_configured:
        console.print("  [green]✓[/] API key found in the environment")
    else:
        console.print(
            "  [yellow]⚠[/]  No API key set. Export one before chatting:\n"
            "       export SITEBOT_API_KEY=sk-..."
        )

    console.print("\n[bold green]✓ Sitebot project initialized.[/]")
    console.print("\nNext steps:")
    if not cfg.sources.urls:
        console.print("  • add sources.urls to sitebot.yaml      (your WordPress REST bases)")
    console.print("  • sitebot context diagnose              (check what each source returns)")
    console.print("  • sitebot chat \"...\"                    (ask a question)")
    console.print("  • sitebot serve                         (start the REST server)")


def _create_sitebot_yaml(path: Path, name: str, url: str, sources: list[str]) -> None:
    source_lines = "".join(f'    - "{s}"\n' for s in sources) or "    # - https://example.org/wp-json/wp/v2\n"
    content = (
        "# Sitebot project configuration. API keys belong in SITEBOT_API_KEY, not here.\n"
        "site:\n"
        f'  name: "{name}"\n'
        f'  url: "{url}"\n'
        "  language: en\n"
        "  answer_level: essential\n"
        "\n"
        "sources:\n"
        "  urls:\n"
        f"{source_lines}"
        "\n"
        "context:\n"
        "  strategy: cache      # or: index (persisted, rebuilt by 'sitebot context refresh')\n"
        "\n"
        "storage:\n"
        "  db_path: sitebot.db\n"
    )
    path.write_text(content, encoding="utf-8")
    console.print(f"  [green]✓[/] {_PROJECT_CONFIG_NAME}")
