"""
Tests for app/services/consent_signals.py
"""

import json

from app.schemas.consent import DEFAULT_CONSENT_STATE, FULL_CONSENT_STATE
from app.services.consent_signals import CommandQueueSink, ConsentSignalMapper, NullSignalSink

AD_SIGNALS = ("ad_storage", "ad_user_data", "ad_personalization")


class TestDefaultSignals:
    def test_everything_denied(self):
        signals = ConsentSignalMapper().default_signals()

        for name in (*AD_SIGNALS, "analytics_storage"):
            assert signals[name] == "denied"

    def test_wait_window(self):
        assert ConsentSignalMapper(wait_for_update_ms=500).default_signals()["wait_for_update"] == 500


class TestSignalsFor:
    def test_marketing_granted(self):
        signals = ConsentSignalMapper.signals_for(FULL_CONSENT_STATE)

        assert signals["analytics_storage"] == "granted"
        assert all(signals[name] == "granted" for name in AD_SIGNALS)

    def test_marketing_denied_keeps_analytics(self):
        signals = ConsentSignalMapper.signals_for(DEFAULT_CONSENT_STATE)

        assert signals["analytics_storage"] == "granted"
        assert all(signals[name] == "denied" for name in AD_SIGNALS)


class TestUpdateSignals:
    def test_pushes_consent_update_when_loaded(self):
        sink = CommandQueueSink()
        mapper = ConsentSignalMapper(sink=sink)

        mapper.update_signals(FULL_CONSENT_STATE)

        assert sink.commands == [["consent", "update", ConsentSignalMapper.signals_for(FULL_CONSENT_STATE)]]

    def test_noop_when_script_not_loaded(self):
        mapper = ConsentSignalMapper(sink=NullSignalSink())

        params = mapper.update_signals(FULL_CONSENT_STATE)

        assert params["ad_storage"] == "granted"

    def test_never_raises_when_sink_fails(self):
        class ExplodingSink:
            is_loaded = True

            def push(self, *command):
                raise RuntimeError("dataLayer is frozen")

        mapper = ConsentSignalMapper(sink=ExplodingSink())

        params = mapper.update_signals(DEFAULT_CONSENT_STATE)

        assert params["ad_storage"] == "denied"


class TestBootstrapScript:
    def test_declares_default_denied_state(self):
        script = ConsentSignalMapper(wait_for_update_ms=500).bootstrap_script()

        assert "gtag('consent', 'default'," in script
        payload = script.split("gtag('consent', 'default', ", 1)[1].split(");", 1)[0]
        assert json.loads(payload)["ad_storage"] == "denied"
        assert "gtag('config'" not in script

    def test_configures_ads_tag_when_id_given(self):
        script = ConsentSignalMapper().bootstrap_script("AW-123456")

        assert 'gtag(\'config\', "AW-123456");' in script
