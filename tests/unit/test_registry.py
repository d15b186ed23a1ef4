"""Tests for the model registry."""

import pytest

from prompt_eval.llm.config import ProviderConfig
from prompt_eval.llm.exceptions import ModelNotFoundError, NoFactoryError
from prompt_eval.llm.registry import ModelRegistry, ProviderDescriptor
from prompt_eval.llm.types import GenerationParams, ModelDescriptor


def _model(model_id, provider):
    return ModelDescriptor(id=model_id, name=model_id.upper(), provider=provider)


def _make_registry(adapter_class=None):
    registry = ModelRegistry()
    registry.register_provider(
        ProviderDescriptor(
            id="alpha",
            name="Alpha",
            models=[_model("shared", "alpha"), _model("alpha-only", "alpha")],
            adapter_class=adapter_class,
            default_params=GenerationParams(temperature=0.5),
        )
    )
    registry.register_provider(
        ProviderDescriptor(id="beta", name="Beta", models=[_model("shared", "beta")])
    )
    return registry


class TestModelRegistry:
    def test_lookup_bare_id_uses_first_provider(self):
        registry = _make_registry()
        assert registry.get_model("shared").provider == "alpha"

    def test_lookup_qualified_id(self):
        registry = _make_registry()
        assert registry.get_model("beta:shared").provider == "beta"
        assert registry.get_model("beta:alpha-only") is None

    def test_unknown_model(self):
        assert _make_registry().get_model("nope") is None

    def test_listing(self):
        registry = _make_registry()
        assert [p.id for p in registry.providers()] == ["alpha", "beta"]
        assert len(registry.all_models()) == 3
        assert [m.id for m in registry.models_by_provider("alpha")] == ["shared", "alpha-only"]
        assert registry.models_by_provider("gamma") == []

    def test_reregister_replaces(self):
        registry = _make_registry()
        registry.register_provider(ProviderDescriptor(id="beta", name="Beta v2"))
        assert registry.get_provider("beta").name == "Beta v2"
        assert registry.get_model("beta:shared") is None

    def test_register_model(self):
        registry = _make_registry()
        registry.register_model(_model("extra", "beta"))
        assert registry.get_model("extra").provider == "beta"

    def test_register_model_unknown_provider(self):
        with pytest.raises(NoFactoryError):
            _make_registry().register_model(_model("x", "gamma"))

    def test_make_descriptor_uses_provider_defaults(self):
        descriptor = _make_registry().make_descriptor("alpha", "custom")
        assert descriptor.id == "custom"
        assert descriptor.default_params.temperature == 0.5
        assert _make_registry().make_descriptor("gamma", "custom") is None

    def test_create_adapter(self):
        created = []

        class Recorder:
            def __init__(self, model, config):
                created.append((model.id, config.provider))

        registry = _make_registry(adapter_class=Recorder)
        adapter = registry.create_adapter("alpha-only", ProviderConfig(provider="alpha"))
        assert isinstance(adapter, Recorder)
        assert created == [("alpha-only", "alpha")]

    def test_create_adapter_unknown_model(self):
        with pytest.raises(ModelNotFoundError):
            _make_registry().create_adapter("nope", ProviderConfig(provider="alpha"))

    def test_create_adapter_without_factory(self):
        with pytest.raises(NoFactoryError, match="beta"):
            _make_registry().create_adapter("beta:shared", ProviderConfig(provider="beta"))
