import logging

from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION

from tradesim.core.config import settings
from tradesim.core.telemetry import (
    LOG_FORMAT,
    build_tracer_provider,
    configure_logging,
    setup_telemetry,
)


class TestTelemetry:
    def test_no_endpoint_skips_setup(self, monkeypatch, caplog):
        monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
        with caplog.at_level(logging.INFO, logger="tradesim.core.telemetry"):
            assert setup_telemetry("tradesim-test") is False
        assert any("Skipping setup" in r.getMessage() for r in caplog.records)

    def test_configure_logging_accepts_lowercase(self):
        configure_logging("debug")
        assert "%(name)s" in LOG_FORMAT

    def test_tracer_provider_carries_service_identity(self):
        provider = build_tracer_provider("tradesim-test", "http://collector:4318/")
        try:
            assert provider.resource.attributes[SERVICE_NAME] == "tradesim-test"
            assert provider.resource.attributes[SERVICE_VERSION] == settings.VERSION
        finally:
            provider.shutdown()
