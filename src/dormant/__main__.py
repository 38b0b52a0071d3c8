"""dormant CLI entry point."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from dormant.config import (
    CONFIG_DIR_NAME,
    load_agent_definitions,
    load_config,
    validate_agent,
)
from dormant.mentions import MentionScanner
from dormant.providers.catalog import CREDENTIAL_FREE_PROVIDERS, PROVIDER_DISPLAY_NAMES
from dormant.providers.credentials import EnvCredentialResolver

# ── Default templates for `dormant init` ─────────────────────────────────────

_DEFAULT_CONFIG = """\
# .dormant/config.yaml — room configuration

room:
  name: "{room_name}"
  notify_transitions: true
  sleep_after_reply: true

cascade:
  max_depth: 5
  stagger_delay: 0.1

context:
  recent_message_window: 20
  default_context_window: 4096

providers:
  openai:
    api_key_env: OPENAI_API_KEY
  anthropic:
    api_key_env: ANTHROPIC_API_KEY
"""

_DEFAULT_CLAUDE = """\
---
name: Claude
provider: anthropic
model: claude-3-5-sonnet
temperature: 0.7
max_tokens: 1000
---

Thoughtful and precise. Asks @GPT for a second opinion on anything
involving code.
"""

_DEFAULT_GPT = """\
---
name: GPT
provider: openai
model: gpt-4o
temperature: 0.8
max_tokens: 1000
---

Energetic and practical. Prefers short answers with concrete examples.
"""


def _init_project(root: Path) -> None:
    """Scaffold a .dormant/ directory with a config and two sample agents."""
    config_dir = root / CONFIG_DIR_NAME
    agents_dir = config_dir / "agents"

    if config_dir.exists():
        print(f"Error: {config_dir} already exists", file=sys.stderr)
        print("Remove it first if you want to re-initialize.", file=sys.stderr)
        sys.exit(1)

    agents_dir.mkdir(parents=True)
    (config_dir / "config.yaml").write_text(_DEFAULT_CONFIG.format(room_name=root.name or "lobby"))
    (agents_dir / "claude.md").write_text(_DEFAULT_CLAUDE)
    (agents_dir / "gpt.md").write_text(_DEFAULT_GPT)

    print(f"Initialized dormant room at {config_dir}")
    print()
    print("Next steps:")
    print(f"  1. Review {config_dir / 'config.yaml'}")
    print("  2. Set environment variables (OPENAI_API_KEY, ANTHROPIC_API_KEY)")
    print(f"  3. Run: dormant check --root {root}")


def _check_project(root: Path) -> int:
    """Load and validate the config and agents. Returns the exit code."""
    config_dir = root / CONFIG_DIR_NAME
    try:
        config = load_config(config_dir)
        definitions = load_agent_definitions(config_dir)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    credentials = EnvCredentialResolver(config.providers)
    errors = 0
    seen: set[str] = set()

    print(f"Room: {config.room.name}")
    print(
        f"Cascade: max_depth={config.cascade.max_depth} "
        f"stagger_delay={config.cascade.stagger_delay}s"
    )
    print(f"Agents ({len(definitions)}):")
    for slug, definition in definitions.items():
        agent = definition.to_agent()
        result = validate_agent(agent)
        if agent.provider not in PROVIDER_DISPLAY_NAMES:
            result.errors.append(f"Unknown provider: {agent.provider}")
        if agent.name.lower() in seen:
            result.errors.append(f"Duplicate agent name: {agent.name}")
        seen.add(agent.name.lower())
        if agent.provider not in CREDENTIAL_FREE_PROVIDERS and not credentials.resolve(
            agent.provider
        ):
            result.warnings.append(
                f"No credential in ${credentials.env_var_for(agent.provider)}"
            )

        status = "ok" if result.is_valid else "invalid"
        print(f"  @{agent.name} [{slug}] {agent.provider}/{agent.model} — {status}")
        for message in result.errors:
            print(f"    error: {message}")
        for message in result.warnings:
            print(f"    warning: {message}")
        errors += len(result.errors)

    if errors:
        print(f"{errors} error(s) found", file=sys.stderr)
        return 1
    return 0


def main():
    parser = argparse.ArgumentParser(
        prog="dormant",
        description="dormant — multi-agent chat rooms where AI agents sleep until mentioned",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )

    subparsers = parser.add_subparsers(dest="command")

    # dormant init
    init_parser = subparsers.add_parser("init", help="Create a .dormant/ directory")
    init_parser.add_argument(
        "--root",
        type=Path,
        default=Path.cwd(),
        help="Directory to initialize (default: current directory)",
    )

    # dormant check
    check_parser = subparsers.add_parser("check", help="Validate config and agent definitions")
    check_parser.add_argument(
        "--root",
        type=Path,
        default=Path.cwd(),
        help="Directory containing .dormant/ (default: current directory)",
    )

    # dormant mentions
    mentions_parser = subparsers.add_parser("mentions", help="Print the @mentions in TEXT")
    mentions_parser.add_argument("text", help="Message text to scan")

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.command == "init":
        _init_project(args.root)
        return

    if args.command == "check":
        sys.exit(_check_project(args.root))

    if args.command == "mentions":
        for name in MentionScanner().extract_mentions(args.text):
            print(name)
        return

    parser.print_help()
    sys.exit(1)


if __name__ == "__main__":
    main()
