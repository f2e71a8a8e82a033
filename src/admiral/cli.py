"""
Command-line interface for Admiral.
"""

import argparse
import asyncio
import sys
from pathlib import Path

import structlog
import uvicorn

from .config import get_settings

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer(colors=True),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="admiral",
        description="Admiral - run and supervise LLM agents playing SpaceMolt",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    settings = get_settings()
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default=settings.host, help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=settings.port, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    profiles_parser = subparsers.add_parser("profiles", help="Inspect agent profiles")
    profiles_subparsers = profiles_parser.add_subparsers(dest="profiles_command")
    profiles_subparsers.add_parser("list", help="List configured profiles")

    config_parser = subparsers.add_parser("config", help="Show configuration")
    config_parser.add_argument("--check", action="store_true", help="Check configuration validity")

    subparsers.add_parser("init", help="Create .env, data directory and prompt.md")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "serve":
        run_server(args.host, args.port, args.reload)
    elif args.command == "profiles":
        if args.profiles_command == "list":
            asyncio.run(list_profiles())
        else:
            profiles_parser.print_help()
    elif args.command == "config":
        if not show_config(args.check):
            sys.exit(1)
    elif args.command == "init":
        init_admiral()
    else:
        parser.print_help()


def run_server(host: str, port: int, reload: bool) -> None:
    """Run the FastAPI server."""
    logger.info("Starting Admiral server", host=host, port=port)

    uvicorn.run(
        "admiral.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
        log_level="info",
    )


async def list_profiles() -> None:
    from .models import init_database
    from .storage import ProfileStore

    settings = get_settings()
    profiles = await ProfileStore(await init_database(settings.database_url)).list_all()

    if not profiles:
        print("No profiles configured.")
        return

    print(f"\n{'Name':<20} {'Mode':<10} {'Model':<40} {'Username':<20}")
    print("-" * 90)

    for p in profiles:
        model = f"{p.provider}/{p.model}" if not p.is_manual else "(manual)"
        print(f"{p.name:<20} {p.connection_mode:<10} {model:<40} {p.username or 'N/A':<20}")


def show_config(check: bool) -> bool:
    """Show current configuration. Returns False if the check found errors."""
    settings = get_settings()

    def mask(value: str) -> str:
        if not value:
            return "(not set)"
        return value[:4] + "..." + value[-4:] if len(value) > 10 else "****"

    print("\n=== Admiral Configuration ===\n")

    print("Server:")
    print(f"  Host: {settings.host}")
    print(f"  Port: {settings.port}")
    print(f"  Debug: {settings.debug}")

    print("\nGame:")
    print(f"  Default Server: {settings.default_server_url}")
    print(f"  Prompt File: {settings.prompt_path}")

    print("\nLLM Providers:")
    print(f"  Anthropic Key: {mask(settings.anthropic_api_key)}")
    print(f"  OpenAI Key: {mask(settings.openai_api_key)}")
    print(f"  OpenRouter Key: {mask(settings.openrouter_api_key)}")
    print(f"  Groq Key: {mask(settings.groq_api_key)}")
    print(f"  Ollama: {settings.ollama_base_url}")

    print("\nAgent Loop:")
    print(f"  Max Tool Rounds: {settings.max_tool_rounds}")
    print(f"  LLM Timeout: {settings.llm_timeout_seconds:g}s")
    print(f"  Context Budget: {settings.context_budget_ratio:.0%}")

    print("\nDatabase:")
    print(f"  URL: {settings.database_url}")

    if not check:
        return True

    print("\n=== Configuration Check ===\n")
    errors = []
    warnings = []

    has_llm = (
        settings.anthropic_api_key or
        settings.openai_api_key or
        settings.openrouter_api_key or
        settings.groq_api_key
    )
    if not has_llm:
        warnings.append("No hosted LLM API key set - only local providers and manual mode will work")

    if not settings.default_server_url.startswith(("http://", "https://")):
        errors.append("DEFAULT_SERVER_URL must be an http(s) URL")

    if not Path(settings.prompt_path).exists():
        warnings.append(f"{settings.prompt_path} not found - agents will start without game knowledge")

    if errors:
        print("Errors:")
        for e in errors:
            print(f"   - {e}")

    if warnings:
        print("Warnings:")
        for w in warnings:
            print(f"   - {w}")

    if not errors and not warnings:
        print("Configuration looks good!")
    elif not errors:
        print("\nConfiguration is valid (with warnings)")
    else:
        print("\nConfiguration has errors - fix them before starting")
    return not errors


def init_admiral() -> None:
    """Create a starter .env, the data directory and an empty prompt.md."""
    env_file = Path(".env")
    data_dir = Path("data")
    prompt_file = Path(get_settings().prompt_path)

    data_dir.mkdir(exist_ok=True)

    if not env_file.exists():
        env_content = """# Admiral Configuration

# LLM API Keys (set the ones you use)
ANTHROPIC_API_KEY=
OPENAI_API_KEY=
# OPENROUTER_API_KEY=
# GROQ_API_KEY=

# Local providers
# OLLAMA_BASE_URL=http://localhost:11434/v1
# LMSTUDIO_BASE_URL=http://localhost:1234/v1

# Game server
DEFAULT_SERVER_URL=https://game.spacemolt.com

# Agent loop
# MAX_TOOL_ROUNDS=30
# LLM_TIMEOUT_SECONDS=300
# CONTEXT_BUDGET_RATIO=0.55

# Server
HOST=127.0.0.1
PORT=3030
DEBUG=false

# Database
DATABASE_URL=sqlite+aiosqlite:///./data/admiral.db
"""
        env_file.write_text(env_content)
        print(f"Created {env_file}")
    else:
        print(f"{env_file} already exists")

    if not prompt_file.exists():
        prompt_file.write_text("# SpaceMolt\n\nGame knowledge for your agents goes here.\n")
        print(f"Created {prompt_file}")

    print(f"Created {data_dir}")
    print("\n=== Next Steps ===")
    print("1. Edit .env and add an LLM API key (or run a local model)")
    print("2. Put game knowledge in prompt.md")
    print("3. Run: admiral serve")


if __name__ == "__main__":
    main()
