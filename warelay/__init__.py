"""
warelay - WhatsApp 多账号实时中继服务

模块概述：
    本文件是 warelay 包的入口文件（__init__.py），定义了包的元信息。
    warelay 把多个 WhatsApp 账号（经由多设备协议桥接服务）中继到
    浏览器端的 Socket.IO 客户端。

    整个服务的核心功能包括：
    - 每个用户独立的协议会话（连接、断线重连、登出、销毁）
    - 会话注册表：一个用户同一时刻只对应一个前端连接
    - 每个用户独立的聊天缓存，定时快照到磁盘
    - 前端事件与协议事件之间的双向转换
"""

# 版本号，遵循语义化版本规范（主版本.次版本.修订号）
__version__ = "0.1.0"

# 项目 logo 表情符号，用于 CLI 输出等场景的品牌标识
__logo__ = "📡"
