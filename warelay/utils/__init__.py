"""
工具函数模块 - 提供 warelay 项目全局通用的辅助函数。

本模块包含：
- ensure_dir：确保目录存在
- encode_filename / decode_filename：用户 ID、凭证键名与文件名之间的可逆转换
- atomic_write_json / read_json：JSON 快照读写
"""

from warelay.utils.helpers import atomic_write_json, decode_filename, encode_filename, ensure_dir, read_json

__all__ = ["ensure_dir", "encode_filename", "decode_filename", "atomic_write_json", "read_json"]
