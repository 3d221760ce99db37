"""Render a style profile for the AI composition prompt."""

import json

from writing_style.models.style import StyleProfile


def build_style_profile_section(profile: StyleProfile | None) -> str:
    """Build the "Style Profile" section of an email composition prompt.

    Args:
        profile: The connection's profile, or None when there is not
            enough data yet.

    Returns:
        A markdown section embedding the style matrix as JSON, or an empty
        string so the drafting prompt falls back to a generic style.
    """
    if profile is None:
        return ""

    style_json = json.dumps(profile.style.to_style_dict(), indent=2)
    return f"## Style Profile\n```json\n{style_json}\n```"
