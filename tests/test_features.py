"""Tests for the feature toggle system."""

import pytest
from django.http import Http404, HttpRequest, HttpResponse
from django.test import override_settings
from django.views import View

from concerto.features import FeatureRequiredMixin, is_feature_enabled, require_feature
from concerto.settings import get_config

ALL_FEATURES = ("registration", "portraits", "contact")


class TestFeaturesConfigDefaults:
    """All features are enabled by default."""

    def test_all_features_enabled_by_default(self) -> None:
        config = get_config().features
        for feature in ALL_FEATURES:
            assert getattr(config, f"{feature}_enabled") is True

    def test_features_config_is_frozen(self) -> None:
        config = get_config().features
        with pytest.raises(AttributeError):
            config.registration_enabled = False  # type: ignore[misc]


class TestIsFeatureEnabled:
    """Tests for the ``is_feature_enabled`` helper."""

    @pytest.mark.parametrize("feature", ALL_FEATURES)
    def test_returns_true_by_default(self, feature: str) -> None:
        assert is_feature_enabled(feature) is True

    @pytest.mark.parametrize("feature", ALL_FEATURES)
    def test_returns_false_when_disabled(self, feature: str) -> None:
        with override_settings(CONCERTO={"features": {f"{feature}_enabled": False}}):
            assert is_feature_enabled(feature) is False

    def test_unknown_feature_raises_value_error(self) -> None:
        with pytest.raises(ValueError, match="Unknown feature"):
            is_feature_enabled("nonexistent_module")


class TestRequireFeature:
    def test_passes_when_enabled(self) -> None:
        require_feature("portraits")

    def test_raises_404_when_disabled(self) -> None:
        with override_settings(CONCERTO={"features": {"portraits_enabled": False}}):
            with pytest.raises(Http404):
                require_feature("portraits")


class _ContactView(FeatureRequiredMixin, View):
    required_feature = "contact"

    def get(self, request: HttpRequest) -> HttpResponse:
        return HttpResponse("ok")


class _MultiFeatureView(FeatureRequiredMixin, View):
    required_feature = ("registration", "portraits")

    def get(self, request: HttpRequest) -> HttpResponse:
        return HttpResponse("ok")


class TestFeatureRequiredMixin:
    def _request(self) -> HttpRequest:
        request = HttpRequest()
        request.method = "GET"
        return request

    def test_allows_enabled_feature(self) -> None:
        response = _ContactView.as_view()(self._request())
        assert response.status_code == 200

    def test_blocks_disabled_feature(self) -> None:
        with override_settings(CONCERTO={"features": {"contact_enabled": False}}):
            with pytest.raises(Http404):
                _ContactView.as_view()(self._request())

    def test_all_listed_features_must_be_enabled(self) -> None:
        with override_settings(CONCERTO={"features": {"portraits_enabled": False}}):
            with pytest.raises(Http404):
                _MultiFeatureView.as_view()(self._request())
