"""
管理和提供不同LLM（大语言模型）的实例。
这个模块完全由 config.yaml 和 provider_templates.yaml 文件驱动。
"""
import os
import importlib
from functools import lru_cache
from config.loader import load_config, load_provider_templates
from core.exceptions import ConfigurationError
import logging

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_provider_templates():
    """缓存提供商模板以避免重复读取文件。"""
    return load_provider_templates()


def _get_class_from_path(class_path: str):
    """根据字符串路径动态导入类。"""
    try:
        module_path, class_name = class_path.rsplit(".", 1)
        module = importlib.import_module(module_path)
        return getattr(module, class_name)
    except (ImportError, AttributeError, ValueError) as e:
        logger.error(f"无法从路径 '{class_path}' 动态导入类: {e}", exc_info=True)
        raise ConfigurationError(f"无法从路径 '{class_path}' 动态导入类: {e}")


def _resolve(alias: str):
    """步骤别名 -> (模型ID, 模型用户配置, 提供商模板)"""
    # config每次都重新加载，以反映UI上的动态修改
    config = load_config()
    templates = get_provider_templates()

    model_id = config.get("steps", {}).get(alias)
    if not model_id:
        logger.error(f"在 config.yaml 的 'steps' 部分找不到别名 '{alias}'。")
        raise ConfigurationError(f"错误: 在 config.yaml 的 'steps' 部分找不到别名 '{alias}'。")

    user_model_config = config.get("models", {}).get(model_id)
    if not user_model_config:
        logger.error(f"在 config.yaml 的 'models' 部分找不到模型ID '{model_id}'。")
        raise ConfigurationError(f"错误: 在 config.yaml 的 'models' 部分找不到模型ID '{model_id}'。")

    template_id = user_model_config.get("template")
    if not template_id:
        logger.error(f"模型 '{model_id}' 的配置中缺少 'template' 字段。")
        raise ConfigurationError(f"错误: 模型 '{model_id}' 的配置中缺少 'template' 字段。")

    provider_template = templates.get(template_id)
    if not provider_template:
        logger.error(f"在提供商模板中找不到模板ID '{template_id}'。")
        raise ConfigurationError(f"错误: 在 provider_templates.yaml 中找不到模板ID '{template_id}'。")

    return model_id, user_model_config, provider_template


def get_model_capabilities(alias: str) -> dict:
    """
    返回步骤所用模型的能力声明，例如:
        {"structured_output": True, "json_mode": False}
    """
    _, _, provider_template = _resolve(alias)
    capabilities = provider_template.get("capabilities") or {}
    return {
        "structured_output": bool(capabilities.get("structured_output", False)),
        "json_mode": bool(capabilities.get("json_mode", False)),
    }


def get_llm(alias: str, temperature: float = 0.7, max_output_tokens: int = None, timeout: float = None):
    """
    根据别名从配置文件获取并实例化一个 LangChain LLM 实例。

    Args:
        alias (str): 步骤的别名 (e.g., "action_classifier", "continuation_writer")。
        temperature (float): 控制模型创造力的参数。
        max_output_tokens (int): 输出 token 上限，按模板的 runtime_params 映射为提供商参数名。
        timeout (float): 单次请求超时 (秒)。

    Returns:
        A LangChain chat model instance.
    """
    model_id, user_model_config, provider_template = _resolve(alias)

    class_path = provider_template.get("class")
    if not class_path:
        logger.error(f"模型 '{model_id}' 的提供商模板中缺少 'class' 路径。")
        raise ConfigurationError(f"错误: 模型 '{model_id}' 的提供商模板中缺少 'class' 路径。")

    # 先校验参数 (环境变量缺失时在任何网络调用前失败)，再导入模型类
    constructor_params = {"temperature": temperature}
    template_params = provider_template.get("params", {})

    for param_name, param_type in template_params.items():
        user_value = user_model_config.get(param_name)
        if user_value is None:
            continue
        if param_type == "string":
            constructor_params[param_name] = user_value
        elif param_type == "secret_env" or param_type == "url_env":
            env_var_value = os.getenv(user_value)
            if not env_var_value:
                logger.error(f"模型 '{model_id}' 需要设置环境变量 '{user_value}'，但它未被设置。")
                raise ConfigurationError(f"错误: 需要为模型 '{model_id}' 设置环境变量 '{user_value}'，但它未被设置。")

            # 例如 'api_key_env' -> 'api_key'
            mapped_param_name = param_name.replace("_env", "")
            constructor_params[mapped_param_name] = env_var_value

    runtime_params = provider_template.get("runtime_params", {})
    if max_output_tokens is not None and runtime_params.get("max_output_tokens"):
        constructor_params[runtime_params["max_output_tokens"]] = max_output_tokens
    if timeout is not None and runtime_params.get("timeout"):
        constructor_params[runtime_params["timeout"]] = timeout

    LLMClass = _get_class_from_path(class_path)
    logger.info(f"正在实例化模型: {model_id} (类: {LLMClass.__name__})")

    try:
        return LLMClass(**constructor_params)
    except Exception as e:
        safe_params = {k: v for k, v in constructor_params.items() if "key" not in k}
        logger.error(f"实例化模型 '{model_id}' 失败: {e}\n使用的参数: {safe_params}", exc_info=True)
        raise ConfigurationError(f"实例化模型 '{model_id}' 失败: {e}")
