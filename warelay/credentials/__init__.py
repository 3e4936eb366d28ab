"""
凭证模块 - 每个用户的协议认证材料的持久化。

- CredentialStore：抽象接口（load / save / delete / exists / list_users）
- FileCredentialStore：每个用户一个目录、每个凭证键一个 JSON 文件
"""

from warelay.credentials.store import CredentialStore, FileCredentialStore

__all__ = ["CredentialStore", "FileCredentialStore"]
