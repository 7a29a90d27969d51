"""Unit tests for build models."""

import pytest
from datetime import timedelta

from pydantic import ValidationError

from web2apk.core.types import utcnow
from web2apk.models.build import (
    BuildConfig,
    BuildOutput,
    BuildRecord,
    BuildStatus,
    BuildStatusView,
    FeatureFlags,
    derive_package_name,
)


def make_record(**overrides) -> BuildRecord:
    config = BuildConfig(website_url="https://example.com", app_name="Example", package_name="com.example.app")
    return BuildRecord(build_id="b1", user_id="u1", config=config, **overrides)


class TestBuildConfig:
    """Tests for build request validation."""

    def test_valid_config(self):
        config = BuildConfig(
            website_url="https://acme.example",
            app_name="Acme",
            package_name="com.acme.demo",
            splash_background="1a2b3c",
        )
        assert config.version_code == 1
        assert config.version_name == "1.0.0"
        assert config.splash_background == "#1A2B3C"

    @pytest.mark.parametrize("color", ["#12345", "#GGGGGG", "red", "#1234567"])
    def test_rejects_non_hex_color(self, color):
        with pytest.raises(ValidationError):
            BuildConfig(
                website_url="https://acme.example",
                app_name="Acme",
                package_name="com.acme.demo",
                splash_background=color,
            )

    @pytest.mark.parametrize("package", ["acme", "Com.acme.demo", "com.1acme", "com..acme", "com.acme-demo"])
    def test_rejects_invalid_package_name(self, package):
        with pytest.raises(ValidationError):
            BuildConfig(website_url="https://acme.example", app_name="Acme", package_name=package)

    def test_rejects_zero_version_code(self):
        with pytest.raises(ValidationError):
            BuildConfig(
                website_url="https://acme.example",
                app_name="Acme",
                package_name="com.acme.demo",
                version_code=0,
            )

    @pytest.mark.parametrize("url", ["ftp://acme.example", "acme.example", "https://"])
    def test_rejects_non_http_url(self, url):
        with pytest.raises(ValidationError):
            BuildConfig(website_url=url, app_name="Acme", package_name="com.acme.demo")

    @pytest.mark.parametrize(
        "url",
        [
            "https://example.com/x ENABLE_GEOLOCATION = false",
            "https://example.com/\tpath",
            "https://example.com/\npath",
            "https://example.com/\x00",
        ],
    )
    def test_rejects_whitespace_and_control_characters(self, url):
        with pytest.raises(ValidationError):
            BuildConfig(website_url=url, app_name="Acme", package_name="com.acme.demo")

    def test_surrounding_whitespace_is_stripped(self):
        config = BuildConfig(website_url="  https://acme.example/  ", app_name="Acme", package_name="com.acme.demo")
        assert config.website_url == "https://acme.example/"

    def test_rejects_long_app_name(self):
        with pytest.raises(ValidationError):
            BuildConfig(website_url="https://acme.example", app_name="x" * 51, package_name="com.acme.demo")

    def test_package_name_derived_from_app_name(self):
        """Omitted package names are derived from the app name."""
        config = BuildConfig.model_validate({"website_url": "https://acme.example", "app_name": "My App!"})
        assert config.package_name == "com.web2apk.myapp"
        assert derive_package_name("Shop 24/7") == "com.web2apk.shop247"

    def test_config_is_immutable(self):
        config = BuildConfig(website_url="https://acme.example", app_name="Acme", package_name="com.acme.demo")
        with pytest.raises(ValidationError):
            config.app_name = "Other"

    def test_feature_defaults(self):
        flags = FeatureFlags()
        assert flags.pull_to_refresh and flags.progress_bar and flags.error_page
        assert flags.local_storage
        assert not flags.file_upload
        assert not flags.deep_linking
        assert not flags.geolocation


class TestBuildRecord:
    """Tests for build record transitions."""

    def test_progress_never_decreases(self):
        record = make_record()
        record.mark_queued("b1")
        record.mark_building(10, "Preparing build environment...", attempt=1)
        record.apply_progress(70, "Building APK...")
        record.apply_progress(15, "Creating project structure...")

        assert record.progress == 70
        assert record.current_step == "Creating project structure..."
        assert record.status == BuildStatus.BUILDING
        assert record.attempts == 1

    def test_mark_completed_sets_expiry(self):
        record = make_record()
        record.mark_queued("b1")
        now = utcnow()
        record.mark_completed(
            BuildOutput(location="apks/b1.apk", size_bytes=3_250_586, download_url="/downloads/b1.apk"),
            retention_days=1,
            now=now,
        )

        assert record.status == BuildStatus.COMPLETED
        assert record.progress == 100
        assert record.expires_at == now + timedelta(days=1)
        assert record.timing.duration_ms is not None
        assert record.size_formatted == "3.10 MB"
        assert not record.is_expired(now)
        assert record.is_expired(now + timedelta(days=2))

    def test_mark_failed_records_error(self):
        record = make_record()
        record.mark_failed("Build failed with exit code 1", "TOOLCHAIN_ERROR")

        assert record.status == BuildStatus.FAILED
        assert record.error.code == "TOOLCHAIN_ERROR"
        assert record.is_terminal
        assert not record.is_active

    def test_mark_cancelled_records_duration(self):
        record = make_record()
        now = utcnow()
        record.mark_queued("b1", now=now)
        record.mark_cancelled(now=now + timedelta(seconds=42))

        assert record.status == BuildStatus.CANCELLED
        assert record.timing.completed_at == now + timedelta(seconds=42)
        assert record.timing.duration_ms == 42000
        assert record.duration_formatted == "42s"

    def test_requeue_keeps_progress(self):
        record = make_record()
        record.mark_building(70, "Building APK...", attempt=1)
        record.mark_requeued("Retrying build...")

        assert record.status == BuildStatus.QUEUED
        assert record.progress == 70
        assert record.error.code is None

    @pytest.mark.parametrize("duration_ms, expected", [(42_000, "42s"), (125_000, "2m 5s"), (None, None)])
    def test_duration_formatted(self, duration_ms, expected):
        record = make_record()
        record.timing.duration_ms = duration_ms
        assert record.duration_formatted == expected

    def test_record_download(self):
        record = make_record()
        record.record_download()
        record.record_download()
        assert record.stats.download_count == 2
        assert record.stats.last_download_at is not None

    def test_record_serialization_roundtrip(self):
        """Records survive JSON persistence."""
        record = make_record(is_premium=True)
        record.mark_queued("b1")
        loaded = BuildRecord.model_validate_json(record.model_dump_json())
        assert loaded == record

    def test_status_view_hides_output_until_completed(self):
        record = make_record()
        record.mark_building(10, "Preparing build environment...", attempt=1)
        view = BuildStatusView.from_record(record)

        assert view.output is None
        assert view.error is None
        assert view.package_name == "com.example.app"
