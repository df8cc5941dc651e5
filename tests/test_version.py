from __future__ import annotations

from importlib import metadata

from runtime import version


def test_runtime_info_reports_version_and_uptime() -> None:
    info = version.runtime_info()

    assert info["version"] == version.VERSION
    assert info["python"]
    assert info["uptimeSeconds"] >= 0
    assert version.VERSION in version.as_string()


def test_uninstalled_checkout_reports_source_version(monkeypatch) -> None:
    def missing(name: str) -> str:
        raise metadata.PackageNotFoundError(name)

    monkeypatch.setattr(metadata, "version", missing)

    assert version.resolve_version() == version.UNINSTALLED_VERSION


def test_installed_distribution_version_is_used(monkeypatch) -> None:
    monkeypatch.setattr(metadata, "version", lambda name: "9.9.9" if name == "chatdirector" else "")

    assert version.resolve_version() == "9.9.9"
