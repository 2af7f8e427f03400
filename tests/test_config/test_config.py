"""
配置管理系统单元测试
"""

import pytest
import yaml

from config import (
    CompressionConfig,
    Config,
    ConfigManager,
    ContextManagementConfig,
    LLMConfig,
    MacroConfig,
    VariableConfig,
    get_config,
    get_config_manager,
    merge_config_override,
    reload_config,
)


class TestLLMConfig:
    """测试 LLM 配置"""

    def test_default_values(self):
        """测试默认值"""
        config = LLMConfig()
        assert config.default_model == "gpt-4o"
        assert config.temperature == 0.7
        assert config.max_tokens == 4096
        assert config.stream is True

    def test_temperature_validation(self):
        """测试温度参数验证"""
        LLMConfig(temperature=0.0)
        LLMConfig(temperature=2.0)

        with pytest.raises(ValueError):
            LLMConfig(temperature=-0.1)
        with pytest.raises(ValueError):
            LLMConfig(temperature=2.1)


class TestContextConfigs:
    """测试上下文相关配置"""

    def test_context_management_defaults(self):
        """测试 Token 限制默认值"""
        config = ContextManagementConfig()
        assert config.enabled is True
        assert config.protected_recent_count == 4
        assert config.retained_characters == 0

    def test_negative_budget_rejected(self):
        """测试负数预算被拒绝"""
        with pytest.raises(ValueError):
            ContextManagementConfig(max_context_tokens=-1)

    def test_compression_trigger_mode_validation(self):
        """测试压缩触发模式验证"""
        for mode in ("token", "count", "both"):
            CompressionConfig(trigger_mode=mode)

        with pytest.raises(ValueError):
            CompressionConfig(trigger_mode="sometimes")

    def test_compression_summary_role_validation(self):
        """测试摘要角色验证"""
        with pytest.raises(ValueError):
            CompressionConfig(summary_role="tool")

    def test_summary_prompts_have_placeholders(self):
        """测试摘要提示词包含占位符"""
        config = CompressionConfig()
        assert "{context}" in config.summary_prompt
        assert "{previous_summary}" in config.continue_summary_prompt
        assert "{context}" in config.continue_summary_prompt

    def test_macro_policy_validation(self):
        """测试未知宏策略验证"""
        assert MacroConfig(unknown_macro_policy="flag").unknown_macro_policy == "flag"
        with pytest.raises(ValueError):
            MacroConfig(unknown_macro_policy="drop")

    def test_variables_disabled_by_default(self):
        """测试会话变量默认关闭"""
        assert VariableConfig().enabled is False


class TestMergeConfigOverride:
    """测试智能体级配置覆盖"""

    def test_no_override_returns_base(self):
        """测试无覆盖时返回原对象"""
        base = CompressionConfig()
        assert merge_config_override(base, None) is base
        assert merge_config_override(base, {}) is base

    def test_partial_override(self):
        """测试部分字段覆盖"""
        base = CompressionConfig(token_threshold=1000)
        merged = merge_config_override(base, {"enabled": True, "token_threshold": None})

        assert merged.enabled is True
        assert merged.token_threshold == 1000
        assert base.enabled is False

    def test_override_is_validated(self):
        """测试覆盖值经过校验"""
        with pytest.raises(ValueError):
            merge_config_override(CompressionConfig(), {"trigger_mode": "bogus"})


class TestConfig:
    """测试总配置"""

    def test_default_values(self):
        """测试默认值"""
        config = Config()
        assert config.environment == "development"
        assert config.debug is False
        assert isinstance(config.llm, LLMConfig)
        assert isinstance(config.compression, CompressionConfig)

    def test_environment_validation(self):
        """测试环境变量验证"""
        Config(environment="development")
        Config(environment="production")
        Config(environment="test")

        with pytest.raises(ValueError):
            Config(environment="invalid")

    def test_config_from_dict(self):
        """测试从字典创建配置"""
        data = {
            "environment": "production",
            "compression": {"enabled": True, "token_threshold": 500},
        }
        config = Config(**data)
        assert config.environment == "production"
        assert config.compression.enabled is True
        assert config.compression.token_threshold == 500


class TestConfigManager:
    """测试配置管理器"""

    def test_load_yaml(self, tmp_path):
        """测试加载 YAML 配置"""
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(yaml.dump({"environment": "production", "llm": {"default_model": "gpt-4"}}))

        manager = ConfigManager(str(config_file))
        loaded = manager.load_yaml()
        assert loaded["environment"] == "production"
        assert loaded["llm"]["default_model"] == "gpt-4"

    def test_load_yaml_nonexistent(self):
        """测试加载不存在的配置文件"""
        manager = ConfigManager("/nonexistent/config.yaml")
        assert manager.load_yaml() == {}

    def test_parse_env_value(self):
        """测试解析环境变量值"""
        manager = ConfigManager("/nonexistent/config.yaml")

        assert manager._parse_env_value("true") is True
        assert manager._parse_env_value("FALSE") is False
        assert manager._parse_env_value("123") == 123
        assert manager._parse_env_value("12.5") == 12.5
        assert manager._parse_env_value("hello") == "hello"
        assert manager._parse_env_value('["a", "b"]') == ["a", "b"]
        assert manager._parse_env_value("[broken") == "[broken"

    def test_config_path_from_env(self, tmp_path, monkeypatch):
        """测试通过 CE_CONFIG_PATH 指定配置文件"""
        config_file = tmp_path / "custom.yaml"
        config_file.write_text("environment: production")
        monkeypatch.setenv("CE_CONFIG_PATH", str(config_file))

        manager = ConfigManager()

        assert manager.config_path == str(config_file)
        assert manager.load().environment == "production"

    def test_env_list_override(self, tmp_path, monkeypatch):
        """测试 JSON 形式的列表覆盖且不修改 YAML 原始数据"""
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(yaml.dump({"variables": {"enabled": False}}))
        monkeypatch.setenv("CE_VARIABLES__ENABLED", "yes")
        monkeypatch.setenv("CE_VARIABLES__DEFINITIONS", '[{"path": "hp", "initial_value": 10}]')

        manager = ConfigManager(str(config_file))
        raw = manager.load_yaml()
        config = manager.load()

        assert config.variables.enabled is True
        assert config.variables.definitions[0].path == "hp"
        assert raw == {"variables": {"enabled": False}}

    def test_override_from_env(self, tmp_path, monkeypatch):
        """测试环境变量覆盖"""
        config_file = tmp_path / "settings.yaml"
        config_data = {"compression": {"token_threshold": 1000}}
        config_file.write_text(yaml.dump(config_data))

        monkeypatch.setenv("CE_ENVIRONMENT", "production")
        monkeypatch.setenv("CE_COMPRESSION__TOKEN_THRESHOLD", "2000")
        monkeypatch.setenv("CE_MACROS__UNKNOWN_MACRO_POLICY", "flag")

        manager = ConfigManager(str(config_file))
        config = manager.load()

        assert config.environment == "production"
        assert config.compression.token_threshold == 2000
        assert config.macros.unknown_macro_policy == "flag"

    def test_load_config_caching(self, tmp_path):
        """测试配置缓存"""
        config_file = tmp_path / "settings.yaml"
        config_file.write_text("environment: production")

        manager = ConfigManager(str(config_file))
        assert manager.load() is manager.load()

    def test_reload_config(self, tmp_path):
        """测试重新加载配置"""
        config_file = tmp_path / "settings.yaml"
        config_file.write_text("environment: production")

        manager = ConfigManager(str(config_file))
        config1 = manager.load()

        config_file.write_text("environment: development")
        config2 = manager.reload()

        assert config1.environment == "production"
        assert config2.environment == "development"

    def test_save_config(self, tmp_path):
        """测试保存配置"""
        config_file = tmp_path / "settings.yaml"

        manager = ConfigManager(str(config_file))
        manager._config = Config(environment="production", llm=LLMConfig(default_model="gpt-4"))
        manager.save()

        with open(config_file) as f:
            saved_data = yaml.safe_load(f)

        assert saved_data["environment"] == "production"
        assert saved_data["llm"]["default_model"] == "gpt-4"


class TestGlobalConfig:
    """测试全局配置函数"""

    def test_get_config(self):
        """测试获取全局配置"""
        assert isinstance(get_config(), Config)

    def test_config_manager_singleton(self):
        """测试配置管理器单例"""
        assert get_config_manager() is get_config_manager()

    def test_reload_global_config(self):
        """测试重新加载全局配置"""
        config1 = get_config()
        config2 = reload_config()
        assert config1 is not config2
