"""项目内使用的自定义异常定义。"""


class GuideIngestError(Exception):
    """基础异常类型。"""


class InvalidConfigurationError(GuideIngestError):
    """配置不合法时抛出。"""


class ConversionError(GuideIngestError):
    """SVG 无法转换为 Vector Drawable 时抛出。"""


class ServiceError(GuideIngestError):
    """调用指南服务接口失败（网络、认证或响应格式错误）。"""


class TransferError(GuideIngestError):
    """向对象存储上传文件失败。"""


class UnsupportedContentError(TransferError):
    """文件类型不受支持，无法上传。"""


class RegistrationError(GuideIngestError):
    """所有文件上传完成后登记元数据失败。"""


class UploadPreconditionError(GuideIngestError):
    """上传条件不满足（缺少文件、文件名不一致或状态不允许）。"""
