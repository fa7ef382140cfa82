from __future__ import annotations

from catalogstudio.generation.background import (
    SOURCE_CUSTOM_INSTRUCTIONS,
    SOURCE_DEFAULT,
    SOURCE_MOODBOARD,
    SOURCE_UPLOADED_IMAGE,
    STUDIO_DEFAULT_BACKGROUND,
    BackgroundContext,
    resolve_background,
)
from catalogstudio.generation.cascade import is_usable_description
from catalogstudio.core.metrics import render_prometheus_metrics
from catalogstudio.inference.base import ImageInput, InferenceError
from tests.conftest import FakeInferenceBackend


FROM_IMAGE = "Describe this background image"
CHOICE = "Choose the background"


def test_uploaded_image_wins_without_consulting_later_tiers() -> None:
    backend = FakeInferenceBackend(
        text_responses={
            FROM_IMAGE: {"background_description": "Weathered oak table beside a bright window", "confidence": 0.9},
        }
    )
    resolution = resolve_background(
        backend,
        BackgroundContext(
            background_image=ImageInput(data=b"bg"),
            custom_instructions="On a beach",
            moodboard_summary="Marble",
        ),
    )

    assert resolution.value == "Weathered oak table beside a bright window"
    assert resolution.source == SOURCE_UPLOADED_IMAGE
    assert resolution.degraded is False
    assert len(backend.text_calls) == 1
    assert backend.text_calls[0][1][0].data == b"bg"


def test_instructions_tier_picks_exactly_one_source() -> None:
    backend = FakeInferenceBackend(
        text_responses={
            CHOICE: {
                "chosen_source": "custom_instructions",
                "background_description": "Sandy beach at golden hour with gentle waves",
            },
        }
    )
    resolution = resolve_background(
        backend,
        BackgroundContext(custom_instructions="Put it on a beach at sunset", moodboard_summary="Marble counter"),
    )

    assert resolution.source == SOURCE_CUSTOM_INSTRUCTIONS
    assert resolution.value == "Sandy beach at golden hour with gentle waves"
    prompt = backend.text_calls[0][0]
    assert "Put it on a beach at sunset" in prompt
    assert "Marble counter" in prompt


def test_moodboard_source_is_accepted() -> None:
    backend = FakeInferenceBackend(
        text_responses={
            CHOICE: {"chosen_source": "moodboard", "background_description": "Polished white marble countertop"},
        }
    )
    resolution = resolve_background(backend, BackgroundContext(moodboard_summary="Marble countertops"))

    assert resolution.source == SOURCE_MOODBOARD
    assert resolution.tier == "instructions_or_moodboard"


def test_generic_tier_two_answer_falls_back_to_studio_default() -> None:
    backend = FakeInferenceBackend(
        text_responses={CHOICE: {"chosen_source": "custom_instructions", "background_description": "studio"}}
    )
    resolution = resolve_background(backend, BackgroundContext(custom_instructions="something nice"))

    assert resolution.value == STUDIO_DEFAULT_BACKGROUND
    assert resolution.source == SOURCE_DEFAULT
    assert resolution.degraded is True
    assert resolution.fell_through == ("instructions_or_moodboard",)


def test_failed_image_tier_degrades_to_next_tier() -> None:
    backend = FakeInferenceBackend(
        text_responses={
            FROM_IMAGE: InferenceError("upstream_down"),
            CHOICE: {"chosen_source": "moodboard", "background_description": "Linen backdrop with dappled sunlight"},
        }
    )
    resolution = resolve_background(
        backend,
        BackgroundContext(background_image=ImageInput(data=b"bg"), moodboard_summary="Linen"),
    )

    assert resolution.value == "Linen backdrop with dappled sunlight"
    assert resolution.degraded is True
    assert resolution.fell_through == ("uploaded_image",)
    body = render_prometheus_metrics(app_name="catalogstudio", app_version="0.1.0", env="test")
    assert 'catalogstudio_resolution_degraded_total{resolver="background",tier="uploaded_image"} 1' in body


def test_no_inputs_uses_default_without_any_call() -> None:
    backend = FakeInferenceBackend()
    resolution = resolve_background(backend, BackgroundContext())

    assert resolution.value == STUDIO_DEFAULT_BACKGROUND
    assert resolution.degraded is False
    assert backend.text_calls == []


def test_is_usable_description() -> None:
    assert is_usable_description("Brushed concrete floor with soft window light")
    assert not is_usable_description("  none ")
    assert not is_usable_description("plain background")
    assert not is_usable_description("short")
    assert not is_usable_description(None)
