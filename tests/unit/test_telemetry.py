from fastapi import FastAPI
from opentelemetry.sdk.trace import TracerProvider

from cartmerge.config import Settings
from cartmerge.telemetry import setup_telemetry


def test_setup_telemetry_installs_provider():
    app = FastAPI()
    provider = setup_telemetry(app, Settings(otlp_endpoint="http://127.0.0.1:9/v1/traces"))
    try:
        assert isinstance(provider, TracerProvider)
        assert provider.resource.attributes["service.name"] == "cart-consolidation-api"
    finally:
        provider.shutdown()
