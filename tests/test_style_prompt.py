"""Tests for the composition prompt style section."""

import json
from collections.abc import Callable

from writing_style.models.style import FeatureVector, StyleProfile
from writing_style.services.style_aggregation import bootstrap_style_matrix
from writing_style.services.style_prompt import build_style_profile_section


def test_no_profile_renders_nothing() -> None:
    assert build_style_profile_section(None) == ""


def test_profile_is_embedded_as_json(make_vector: Callable[..., FeatureVector]) -> None:
    profile = StyleProfile(
        connection_id="conn-1",
        num_messages=1,
        style=bootstrap_style_matrix(make_vector(greeting_form="hey", token_total=80)),
    )

    section = build_style_profile_section(profile)

    assert section.startswith("## Style Profile\n```json\n")
    assert section.endswith("\n```")
    embedded = json.loads(section.split("```json\n", 1)[1].rsplit("\n```", 1)[0])
    assert embedded == profile.style.to_style_dict()
    assert embedded["greeting_form"] == {"hey": 1}
