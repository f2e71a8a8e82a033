"""
System prompt assembly for game-playing agents.
"""

from pathlib import Path

import structlog

from ..models import Profile

logger = structlog.get_logger()

DEFAULT_DIRECTIVE = "Play the game. Mine ore, sell it, and grow stronger."
MISSING_PROMPT_MD = "(No prompt.md found)"

RULES = """## Rules
- You are FULLY AUTONOMOUS. Never ask the human for input.
- Use the "game" tool for ALL game interactions.
- After registering, IMMEDIATELY save credentials with save_credentials.
- Query commands are free and unlimited -- use them often.
- Action commands cost 1 tick (10 seconds).
- Always check fuel before traveling and cargo space before mining.
- Be social -- chat with players you meet.
- When starting fresh: undock -> travel to asteroid belt -> mine -> travel back -> dock -> sell -> refuel -> repeat.
"""


def load_prompt_md(path: str | Path) -> str:
    """Read the game knowledge file, or a placeholder if it is missing."""
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError:
        logger.warning("Game knowledge file not found", path=str(path))
        return MISSING_PROMPT_MD


def directive_for(profile: Profile) -> str:
    return profile.directive or DEFAULT_DIRECTIVE


def format_credentials(profile: Profile, registration_code: str | None = None) -> str:
    if profile.has_credentials:
        return "\n".join([
            f"- Username: {profile.username}",
            f"- Password: {profile.password}",
            f"- Empire: {profile.empire}",
            f"- Player ID: {profile.player_id}",
            "",
            "You are already logged in. Start playing immediately.",
        ])

    text = (
        "New player -- you need to register first. Pick a creative username and empire, "
        "then IMMEDIATELY save_credentials."
    )
    if registration_code:
        text += f"\nUse registration code: {registration_code} when registering."
    return text


def build_system_prompt(
    profile: Profile,
    command_list: str,
    prompt_md: str,
    registration_code: str | None = None,
) -> str:
    return (
        "You are an autonomous AI agent playing SpaceMolt, a text-based space MMO.\n\n"
        f"## Your Mission\n{directive_for(profile)}\n\n"
        f"## Game Knowledge\n{prompt_md}\n\n"
        f"## Your Credentials\n{format_credentials(profile, registration_code)}\n\n"
        "## Available Game Commands\n"
        'Use the "game" tool with a command name and args. Example: game(command="mine", args={})\n'
        f"{command_list}\n\n"
        f"{RULES}"
    )
