from relay_service.core.config import apply_env_overrides, deep_merge, load_settings
from relay_service.core.factory import ServiceFactory, load
from relay_service.core.tool_registry import ToolRegistry
from relay_service.providers.scripted.provider import ScriptedProvider


def test_deep_merge_keeps_untouched_keys():
    base = {"limits": {"tool_timeout_sec": 10, "max_tool_loops": 8}, "logging": {"level": "INFO"}}
    merged = deep_merge(base, {"limits": {"max_tool_loops": 3}})
    assert merged == {"limits": {"tool_timeout_sec": 10, "max_tool_loops": 3}, "logging": {"level": "INFO"}}
    assert base["limits"]["max_tool_loops"] == 8


def test_env_overrides_are_yaml_parsed():
    cfg = {"limits": {"approval_timeout_sec": None}}
    environ = {
        "RELAY__LIMITS__APPROVAL_TIMEOUT_SEC": "30",
        "RELAY__LOGGING__LEVEL": "DEBUG",
        "RELAY__TOOLS__ENABLED": "[get_current_time]",
        "OTHER": "ignored",
    }
    apply_env_overrides(cfg, environ)
    assert cfg["limits"]["approval_timeout_sec"] == 30
    assert cfg["logging"]["level"] == "DEBUG"
    assert cfg["tools"]["enabled"] == ["get_current_time"]
    assert "other" not in cfg


def test_packaged_defaults_load():
    settings = load_settings()
    assert settings["providers"]["model"]["impl"].endswith("OpenAIResponsesProvider")
    assert settings["limits"]["approval_timeout_sec"] is None
    assert "get_current_time" in settings["tools"]["enabled"]


def test_load_filters_unknown_kwargs():
    provider = load("relay_service.providers.scripted.provider.ScriptedProvider", delay=0.5, unknown="x")
    assert isinstance(provider, ScriptedProvider)
    assert provider.delay == 0.5


def test_registry_applies_settings_to_tools():
    registry = ToolRegistry(
        [
            {"name": "clock", "impl": "relay_service.tools.time_tool.TimeTool", "require_approval": True},
            {"name": "weather", "impl": "relay_service.tools.weather_tool.GetWeatherTool"},
            {"name": "broken", "impl": "relay_service.tools.nope.Missing"},
        ],
        enabled=["clock", "broken"],
    )
    assert list(registry.all()) == ["clock"]
    clock = registry.get("clock")
    assert clock.name == "clock"
    assert clock.require_approval is True


def test_factory_wires_turn_service():
    settings = load_settings()
    settings["providers"]["model"] = {"impl": "relay_service.providers.scripted.provider.ScriptedProvider", "args": {}}
    settings["limits"]["approval_timeout_sec"] = 5
    svc = ServiceFactory(settings).get_turn_service()
    assert isinstance(svc.provider, ScriptedProvider)
    assert svc.approval_timeout == 5.0
    assert set(svc.tools) == {"get_weather", "get_current_time"}
