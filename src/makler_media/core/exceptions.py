"""项目内使用的自定义异常定义。"""


class MediaEngineError(Exception):
    """基础异常类型。"""


class InvalidConfigurationError(MediaEngineError):
    """配置不合法时抛出。"""


class InputRejectedError(MediaEngineError):
    """输入文件数量、大小或类型超出限制。"""


class DecodeError(MediaEngineError):
    """图片无法解码（文件损坏或格式不支持）。"""


class EncodeError(MediaEngineError):
    """图片序列化失败。"""


class WatermarkAssetError(MediaEngineError):
    """水印 Logo 无法加载，调用方应跳过 Logo 继续绘制。"""


class QueueExhaustionError(MediaEngineError):
    """并发队列的运行槽位被超额占用（属于编程错误）。"""


class EncodingSinkError(MediaEngineError):
    """视频编码失败，整个幻灯片任务终止。"""
