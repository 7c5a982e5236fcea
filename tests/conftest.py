"""Shared pytest fixtures."""

import os

import pytest


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path_factory, monkeypatch):
    """Keep the developer's config.json, .env and CI_SERVER_* out of tests."""
    for key in list(os.environ):
        if key.startswith("CI_SERVER_"):
            monkeypatch.delenv(key)
    workdir = tmp_path_factory.mktemp("cwd")
    monkeypatch.chdir(workdir)
