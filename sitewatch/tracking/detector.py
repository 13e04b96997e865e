"""Stationary detection over a stream of noisy position fixes.

``advance`` is a pure function: it takes a new sample and the previous
``DetectorState`` and returns the next state plus a flag telling the caller
to prompt. It never performs I/O and never raises; filtering out malformed
(NaN) coordinates is the caller's job.

Order of checks:

1. accuracy gate: fixes worse than ``max_accuracy_m`` are dropped, state unchanged
2. movement gate: speed above ``moving_speed_mps`` resets everything
3. the sample joins the bounded recent-sample window (oldest evicted first)
4. warm-up: fewer than ``min_samples`` samples never decide anything
5. the first decided sample becomes the anchor
6. within ``radius_m`` of the anchor the dwell clock runs and triggers once
   ``dwell_ms`` has elapsed; further away the anchor moves to the new sample
"""

from __future__ import annotations

from sitewatch.model.models import DetectorState, LocationSample
from sitewatch.tracking.config import DEFAULT_CONFIG, TrackingConfig
from sitewatch.tracking.geo import haversine_m


def _anchored(sample: LocationSample, history: tuple[LocationSample, ...]) -> DetectorState:
    return DetectorState(
        is_stationary=True,
        anchor=sample,
        stationary_start_ms=sample.captured_at_ms,
        recent_samples=history,
    )


def push_sample(
    history: tuple[LocationSample, ...], sample: LocationSample, capacity: int
) -> tuple[LocationSample, ...]:
    """Append ``sample`` and keep at most ``capacity`` newest entries."""
    updated = (*history, sample)
    if len(updated) > capacity:
        updated = updated[len(updated) - capacity :]
    return updated


def advance(
    sample: LocationSample,
    state: DetectorState,
    config: TrackingConfig = DEFAULT_CONFIG,
) -> tuple[DetectorState, bool]:
    """Advance the detector by one sample.

    Args:
        sample: The new position fix.
        state: The state returned by the previous call (or ``DetectorState.empty()``).
        config: Thresholds.

    Returns:
        (new_state, should_prompt)
    """
    if sample.accuracy_m > config.max_accuracy_m:
        return state, False

    speed = sample.speed_mps or 0.0
    if speed > config.moving_speed_mps:
        return DetectorState.empty(), False

    history = push_sample(state.recent_samples, sample, config.history_size)

    if len(history) < config.min_samples:
        return _replace_history(state, history), False

    if state.anchor is None or state.stationary_start_ms is None:
        return _anchored(sample, history), False

    distance = haversine_m(
        state.anchor.latitude,
        state.anchor.longitude,
        sample.latitude,
        sample.longitude,
    )
    if distance > config.radius_m:
        # relocated: the dwell clock restarts here
        return _anchored(sample, history), False

    elapsed = sample.captured_at_ms - state.stationary_start_ms
    return _replace_history(state, history), elapsed >= config.dwell_ms


def _replace_history(state: DetectorState, history: tuple[LocationSample, ...]) -> DetectorState:
    return DetectorState(
        is_stationary=state.is_stationary,
        anchor=state.anchor,
        stationary_start_ms=state.stationary_start_ms,
        recent_samples=history,
    )


def held_for_ms(state: DetectorState, now_ms: int) -> int:
    """How long the current anchor has been held, 0 when there is none."""
    if state.stationary_start_ms is None:
        return 0
    return max(0, now_ms - state.stationary_start_ms)
