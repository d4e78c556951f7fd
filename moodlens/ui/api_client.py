"""HTTP client wrapper for the MoodLens FastAPI backend."""

from __future__ import annotations

import os

import httpx
import streamlit as st

API_URL = os.getenv("API_URL", "http://localhost:8000")


def check_health() -> bool:
    """Return True if the API server responds to /health."""
    try:
        r = httpx.get(f"{API_URL}/health", timeout=5.0)
        return r.status_code == 200
    except httpx.ConnectError:
        return False


def _error_message(response: httpx.Response) -> str:
    try:
        return str(response.json()["error"]["message"])
    except (ValueError, KeyError, TypeError):
        return response.text or f"HTTP {response.status_code}"


def analyze_video(youtube_url: str) -> dict:  # type: ignore[type-arg]
    """Run (or fetch the cached) mood analysis for a YouTube URL."""
    try:
        # Long videos take several minutes: one job per 15 s segment.
        r = httpx.post(
            f"{API_URL}/api/analyze",
            json={"youtube_url": youtube_url},
            timeout=600.0,
        )
    except httpx.HTTPError as e:
        st.error(f"Analysis failed: {e}")
        return {}
    if r.is_error:
        st.error(f"Analysis failed: {_error_message(r)}")
        return {}
    return r.json().get("data", {})  # type: ignore[no-any-return]


def get_cache_stats() -> dict:  # type: ignore[type-arg]
    """Fetch cache availability and key count."""
    try:
        r = httpx.get(f"{API_URL}/api/analyze/cache/stats", timeout=10.0)
        r.raise_for_status()
        return r.json().get("data", {})  # type: ignore[no-any-return]
    except httpx.HTTPError:
        return {}


def invalidate_cache(youtube_url: str) -> bool:
    """Drop the cached result for a YouTube URL."""
    try:
        r = httpx.request(
            "DELETE",
            f"{API_URL}/api/analyze/cache",
            json={"youtube_url": youtube_url},
            timeout=10.0,
        )
    except httpx.HTTPError as e:
        st.error(f"Cache invalidation failed: {e}")
        return False
    if r.is_error:
        st.error(f"Cache invalidation failed: {_error_message(r)}")
        return False
    return True
