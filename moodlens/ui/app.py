"""MoodLens -- Streamlit UI.

Paste a YouTube URL, run the analysis and browse the mood timeline with the
representative frame of each segment.
"""

from __future__ import annotations

import base64

import streamlit as st

from moodlens.pipeline_config import Mood
from moodlens.ui.api_client import analyze_video, check_health, get_cache_stats, invalidate_cache

MOOD_EMOJI = {
    Mood.HAPPY: "😊",
    Mood.SAD: "😢",
    Mood.ANGRY: "😠",
    Mood.ANXIOUS: "😰",
    Mood.EXCITED: "🤩",
    Mood.CALM: "😌",
    Mood.NEUTRAL: "😐",
}


def _mood_label(mood: str) -> str:
    try:
        return f"{MOOD_EMOJI[Mood(mood)]} {mood.capitalize()}"
    except ValueError:
        return mood


def _format_time(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}:{secs:02d}"


# ---------------------------------------------------------------------------
# Page config (must be first Streamlit call)
# ---------------------------------------------------------------------------
st.set_page_config(page_title="MoodLens", layout="wide")

# ---------------------------------------------------------------------------
# Sidebar -- API status + cache
# ---------------------------------------------------------------------------
with st.sidebar:
    st.title("MoodLens")
    st.markdown("---")

    if check_health():
        st.markdown(":green_circle: API connected")
    else:
        st.markdown(":red_circle: API unreachable")

    st.markdown("---")
    st.subheader("Result cache")
    stats = get_cache_stats()
    if stats.get("available"):
        st.metric("Cached videos", stats.get("keys", 0))
    else:
        st.caption("Cache unavailable -- every analysis runs from scratch.")

# ---------------------------------------------------------------------------
# Main page
# ---------------------------------------------------------------------------
st.header("Video mood analysis")
url = st.text_input("YouTube URL", placeholder="https://www.youtube.com/watch?v=...")

col_run, col_clear = st.columns([1, 1])
run = col_run.button("Analyze", type="primary", disabled=not url)
if col_clear.button("Clear cached result", disabled=not url) and invalidate_cache(url):
    st.success("Cached result removed.")

if run:
    with st.spinner("Downloading, splitting and analysing segments..."):
        st.session_state["result"] = analyze_video(url)

result = st.session_state.get("result")
if result:
    timeline = result.get("mood_timeline", [])

    c1, c2, c3 = st.columns(3)
    c1.metric("Overall mood", _mood_label(result.get("overall_mood", "neutral")))
    c2.metric("Emotional variability", f"{result.get('emotional_variability', 0.0):.0%}")
    c3.metric("Segments", len(timeline))

    st.subheader("Confidence over time")
    st.line_chart({"confidence": [entry["confidence"] for entry in timeline]})

    st.subheader("Timeline")
    for entry in timeline:
        left, right = st.columns([1, 3])
        frame = entry.get("frame_image")
        if frame:
            left.image(base64.b64decode(frame), use_container_width=True)
        else:
            left.caption("No frame")
        right.markdown(
            f"**{_format_time(entry['start'])} - {_format_time(entry['end'])}** "
            f"{_mood_label(entry['mood'])}"
        )
        right.progress(min(max(float(entry["confidence"]), 0.0), 1.0), text="confidence")
