"""
工具函数集合 - warelay 项目全局通用的辅助函数。

本模块提供路径管理、字符串处理、时间戳等基础工具函数，
被项目中的多个模块引用。

函数分类：
- 路径管理：ensure_dir
- 字符串工具：truncate_string, encode_filename, decode_filename
- 时间工具：timestamp
- 文件工具：atomic_write_json, read_json
"""

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote


def ensure_dir(path: Path) -> Path:
    """
    确保目录存在，不存在则递归创建。

    参数:
        path: 目标目录路径

    返回:
        创建后的目录路径（原样返回）
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def timestamp() -> str:
    """获取当前时间的 ISO 8601 格式字符串。"""
    return datetime.now().isoformat()


def truncate_string(s: str, max_len: int = 100, suffix: str = "...") -> str:
    """
    截断字符串到指定最大长度，超出时添加后缀。

    参数:
        s: 原始字符串
        max_len: 最大长度（包含后缀），默认 100
        suffix: 截断后缀，默认 "..."

    返回:
        截断后的字符串
    """
    if len(s) <= max_len:
        return s
    return s[: max_len - len(suffix)] + suffix


def encode_filename(name: str) -> str:
    """
    把任意字符串（用户 ID、凭证键名）编码为可逆的文件名片段。

    使用百分号编码，"/"、":"、"%" 等字符都会被转义，
    因此结果不会包含路径分隔符，且 decode_filename 能还原出原字符串。
    不同的输入一定得到不同的文件名。

    参数:
        name: 原始字符串

    返回:
        编码后的文件名片段
    """
    return quote(name, safe="")


def decode_filename(name: str) -> str:
    """encode_filename 的逆操作。"""
    return unquote(name)


def read_json(path: Path) -> Any:
    """读取 JSON 文件。文件不存在时返回 None，解析失败时抛出 ValueError。"""
    if not path.exists():
        return None
    return json.loads(path.read_text(encoding="utf-8"))


def atomic_write_json(path: Path, data: Any) -> None:
    """
    原子写入 JSON 文件：先写临时文件，再用 os.replace 覆盖目标。

    写入过程中进程被杀掉时，目标文件要么是旧内容，要么是新内容，
    不会出现写了一半的文件。

    参数:
        path: 目标文件路径（父目录会自动创建）
        data: 可 JSON 序列化的数据
    """
    ensure_dir(path.parent)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
    os.replace(tmp, path)
