"""Chat Gateway 顶层包。

对调用方提供统一的对话补全接口，内部翻译为各厂商（Claude、OpenAI）的协议，
并提供会话历史与 API Key 鉴权。
"""

__version__ = "0.1.0"
