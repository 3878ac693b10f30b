"""Shared fixtures for all tests."""

from __future__ import annotations

import json

import pytest


@pytest.fixture()
def sample_response():
    """A completed quiz response as handed to the report variable builder."""
    return {
        "name": "Ana Lima",
        "email": "ana@example.com",
        "score": 92.5,
        "timestamp": "2024-03-05T10:00:00Z",
        "completion_time": 125,
    }


@pytest.fixture()
def legacy_contents():
    """Persisted ``content`` values in every shape templates have been stored in."""
    return {
        "array": json.dumps([
            {"id": "a1", "title": "Intro", "content": "<p>Hello {{name}}</p>"},
            {"id": "b2", "title": "Results", "content": "<p>{{score}}%</p>"},
        ]),
        "object": json.dumps({"title": "Old format", "body": "<p>x</p>"}),
        "html": "<p>Plain HTML body</p>",
    }
