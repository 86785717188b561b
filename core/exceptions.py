"""
自定义异常类
用于在应用的不同层之间传递具有明确语义的错误信息。
"""

class LLMOperationError(Exception):
    """当与大语言模型交互时发生错误"""
    pass

class TransportError(LLMOperationError):
    """模型后端不可达、返回非 2xx 或请求超时"""
    pass

class ResponseParseError(LLMOperationError):
    """模型返回内容经所有解析阶段后仍无法恢复出正文"""
    pass

class ConfigurationError(Exception):
    """当应用配置不正确或缺失时发生错误"""
    pass

class LayoutError(Exception):
    """文本测量失败。属于程序错误，不做恢复。"""
    pass
