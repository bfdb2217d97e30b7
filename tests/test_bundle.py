"""Bundle serialization and derived views."""

from trendsignals.bundle import ConsolidatedBundle, ProviderResult, ProviderStatus, RawFinding


def sample_bundle():
    findings = (
        RawFinding(source_provider="web", url="https://a.com", title="A", published_age_hint="the past month"),
        RawFinding(source_provider="marketplace", url="https://amazon.com/dp/X", title="X", engagement_hint=120),
    )
    return ConsolidatedBundle(
        topic="linen shirts",
        risk_level=30,
        band="balanced",
        per_provider_text={"web": "=== WEB ===\nstuff", "news": "", "social": "", "marketplace": "=== MKT ==="},
        provider_status={
            "web": ProviderStatus(ok=True, finding_count=1, elapsed_ms=120),
            "news": ProviderStatus(ok=False, timed_out=True, error_message="news provider did not respond"),
            "social": ProviderStatus(configured=False),
            "marketplace": ProviderStatus(ok=True, finding_count=1),
        },
        all_citations=tuple(item.url for item in findings),
        findings=findings,
    )


class TestConsolidatedBundle:
    def test_json_round_trip_preserves_everything(self):
        bundle = sample_bundle()
        restored = ConsolidatedBundle.from_json(bundle.to_json())
        assert restored == bundle
        assert list(restored.per_provider_text) == list(bundle.per_provider_text)
        assert restored.all_citations == ("https://a.com", "https://amazon.com/dp/X")

    def test_active_providers_and_combined_text(self):
        bundle = sample_bundle()
        assert bundle.active_providers == ["web", "marketplace"]
        assert bundle.combined_text() == "=== WEB ===\nstuff\n\n=== MKT ==="
        assert not bundle.is_empty

    def test_status_flags_survive_dict_form(self):
        data = sample_bundle().to_dict()
        assert data["provider_status"]["news"]["timed_out"] is True
        assert data["provider_status"]["social"]["configured"] is False


class TestProviderResult:
    def test_unpacks_to_text_and_findings(self):
        text, findings = ProviderResult(text="hi", findings=[])
        assert text == "hi"
        assert findings == []

    def test_has_data(self):
        assert not ProviderResult().has_data
        assert not ProviderResult(text="   ", errors=["x"]).has_data
        assert ProviderResult(findings=[RawFinding(source_provider="web", url="https://a.com")]).has_data
