"""Tests for application construction from the environment."""

from fastapi import FastAPI

from clinic_booking import config, main


def test_import_does_not_build_an_app():
    assert not hasattr(main, "app")


def test_build_app_from_env(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "DATABASE_URL", f"sqlite:///{tmp_path / 'env.db'}")
    monkeypatch.setattr(config, "GOOGLE_CLIENT_ID", None)

    app = main.build_app_from_env()
    assert isinstance(app, FastAPI)
    assert app.state.controller.calendar_sync is None
    assert not (tmp_path / "env.db").exists()
