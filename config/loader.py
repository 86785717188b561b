import yaml
import os
import sys
import logging

from core.exceptions import ConfigurationError
from core.schemas import ContinuationAction, ContinuationConfig, LayoutProfile
from core.pacing import targets_from_config

logger = logging.getLogger(__name__)

_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# 按键合并的配置段，其余顶层键由用户配置直接覆盖
MERGEABLE_SECTIONS = ("models", "steps", "pacing", "generation", "layout")


def get_resource_path(relative_path: str) -> str:
    """
    获取资源的正确路径。
    优先使用 MANUSCRIPT_CONFIG_DIR，其次为 PyInstaller 解包目录，最后为项目根目录。
    """
    base_path = os.getenv("MANUSCRIPT_CONFIG_DIR") or getattr(sys, "_MEIPASS", None) or _PROJECT_ROOT
    return os.path.join(base_path, relative_path)


def config_path() -> str:
    return get_resource_path("config.yaml")


def user_config_path() -> str:
    return get_resource_path("user_config.yaml")


def provider_templates_path() -> str:
    return get_resource_path("provider_templates.yaml")


def _merge_configs(base_config: dict, user_config: dict) -> dict:
    """
    合并基础配置和用户配置。
    models / steps / pacing / generation / layout 按键覆盖或扩展，其余顶层键直接替换。
    """
    merged_config = dict(base_config)

    for section in MERGEABLE_SECTIONS:
        if section in user_config:
            merged_section = dict(merged_config.get(section) or {})
            merged_section.update(user_config[section] or {})
            merged_config[section] = merged_section

    for key, value in user_config.items():
        if key not in MERGEABLE_SECTIONS:
            merged_config[key] = value

    return merged_config


def _read_yaml(path: str) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if data else {}
    except yaml.YAMLError as e:
        logger.error(f"解析 {path} 文件失败: {e}", exc_info=True)
        raise ConfigurationError(f"错误: 解析 {path} 文件失败: {e}")


def load_user_config() -> dict:
    """
    加载并解析 user_config.yaml 文件。
    """
    path = user_config_path()
    if not os.path.exists(path):
        return {}
    return _read_yaml(path)


def load_config() -> dict:
    """
    加载并解析 config.yaml 和 user_config.yaml 文件，并进行合并。
    """
    path = config_path()
    if not os.path.exists(path):
        logger.warning(f"配置文件 {path} 未找到，返回默认空配置。")
        return {"models": {}, "steps": {}}

    base_config = _read_yaml(path)
    return _merge_configs(base_config, load_user_config())


def load_provider_templates() -> dict:
    """
    加载并解析 provider_templates.yaml 文件。
    """
    path = provider_templates_path()
    if not os.path.exists(path):
        logger.warning(f"提供商模板文件 {path} 未找到，返回空模板。")
        return {}
    return _read_yaml(path)


def save_user_config(user_config_data: dict):
    """
    将用户配置字典写回到 user_config.yaml 文件。

    Args:
        user_config_data (dict): 要保存的用户配置数据（例如 steps、pacing）。
    """
    path = user_config_path()
    try:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(user_config_data, f, allow_unicode=True, sort_keys=False)
        logger.info(f"用户配置已成功保存到 {path}。")
    except OSError as e:
        logger.error(f"写入 {path} 文件失败: {e}", exc_info=True)
        raise IOError(f"错误: 写入 {path} 文件失败: {e}")


def build_layout_profile(config: dict = None) -> LayoutProfile:
    config = load_config() if config is None else config
    return LayoutProfile.from_config(config.get("layout"))


def build_continuation_config(config: dict = None, **overrides) -> ContinuationConfig:
    """
    由 generation / pacing 配置段构造 ContinuationConfig。
    overrides 用于界面上的临时选择 (如续写模式、显式动作)。
    """
    config = load_config() if config is None else config
    generation = config.get("generation") or {}
    targets = targets_from_config(config.get("pacing"))

    explicit_action = overrides.pop("explicit_action", generation.get("explicit_action"))
    if isinstance(explicit_action, str):
        token = explicit_action
        explicit_action = ContinuationAction.from_token(token.strip().lower())
        if explicit_action is None:
            raise ConfigurationError(f"无效的续写动作: '{token}'")

    params = {
        "language": generation.get("language", "en"),
        "continuation_mode": generation.get("continuation_mode", "general"),
        "continuation_length": generation.get("continuation_length", "medium"),
        "context_size": generation.get("context_size", "medium"),
        "explicit_action": explicit_action,
        "target_scene_word_count": targets.words_per_scene,
        "target_scenes_per_chapter": targets.scenes_per_chapter,
        "mode_length_overrides": dict(generation.get("mode_length_overrides") or {}),
        "instruction": generation.get("instruction"),
        "classification_timeout": generation.get("classification_timeout", 20.0),
        "content_timeout": generation.get("content_timeout", 120.0),
        "auto_scan_after_continue": bool(generation.get("auto_scan_after_continue", False)),
        "scan_min_chars": int(generation.get("scan_min_chars", 20)),
        "clear_codex_before_scan": bool(generation.get("clear_codex_before_scan", False)),
    }
    params.update(overrides)
    return ContinuationConfig(**params)
