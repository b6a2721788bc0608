"""When to run prospective reflection on a user's message buffer."""

from __future__ import annotations

from rmm.config import ReflectionConfig, ReflectionMode


def check_reflection_triggers(
    human_message_count: int,
    time_since_last_update_ms: int | float,
    config: ReflectionConfig,
) -> bool:
    """Decide whether the buffered dialogue should be reflected on now.

    Either max threshold forces reflection. Otherwise the min thresholds
    are combined by mode: STRICT needs both, RELAXED needs either.

    Args:
        human_message_count: Human messages in the live buffer
        time_since_last_update_ms: Time since the store last wrote the buffer
        config: Reflection thresholds

    Returns:
        True if reflection should run
    """
    if human_message_count >= config.max_turns:
        return True
    if time_since_last_update_ms >= config.max_inactivity_ms:
        return True

    min_turns_met = human_message_count >= config.min_turns
    min_inactivity_met = time_since_last_update_ms >= config.min_inactivity_ms

    if config.mode == ReflectionMode.STRICT:
        return min_turns_met and min_inactivity_met
    return min_turns_met or min_inactivity_met
