from datetime import date

from realtime_calendar_agent.instructions import build_instructions


def test_website_text_is_embedded_verbatim():
    text = "Acme {widgets} ship in 3 days.\nPricing: $10"
    instructions = build_instructions(text, today=date(2024, 3, 18))
    assert text in instructions
    assert "Today is 2024-03-18 (Monday)" in instructions


def test_task_legend_uses_priority_emoji():
    instructions = build_instructions("")
    for emoji in ("🔴", "🟡", "🟢", "⬜"):
        assert emoji in instructions
    assert "create_task_event" in instructions
    assert "delete_calendar_event" in instructions
