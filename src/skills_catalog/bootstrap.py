"""
启动层：`.env` 发现、overlay 发现与有效配置解析（含字段来源追踪）。

说明：
- `SkillsManager` 本身不读 `.env`、不找 overlay；这些由 CLI 等入口通过本模块显式完成；
- 本模块不修改 `os.environ`，解析出的 env 视图随 `ResolvedCatalogConfig.env` 返回。
"""

from __future__ import annotations

import os
import re
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from skills_catalog.config.defaults import load_default_config_dict
from skills_catalog.config.loader import CatalogConfig, read_yaml_mapping

ENV_FILE_VAR = "SKILLS_CATALOG_ENV_FILE"
CONFIG_PATHS_VAR = "SKILLS_CATALOG_CONFIG_PATHS"
DEFAULT_OVERLAY = Path("config") / "catalog.yaml"

EMBEDDED_DEFAULT_LABEL = "embedded_default"

_PATH_LIST_SEP_RE = re.compile(r"[,;]")


def _env_value(name: str, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """返回去空白后的 env 值；未设置或空白视为 None。"""

    raw = (os.environ if env is None else env).get(name)
    if raw is None:
        return None
    return str(raw).strip() or None


def _anchor(raw: str | Path, workspace_root: Path) -> Path:
    """相对路径锚定到 workspace_root，并返回 canonical 路径。"""

    p = Path(raw).expanduser()
    if not p.is_absolute():
        p = workspace_root / p
    return p.resolve()


def parse_dotenv_text(text: str) -> Dict[str, str]:
    """
    解析 `.env` 文本（best-effort）。

    支持：`KEY=VALUE`、`export KEY=VALUE`、`#` 注释、空行、成对的单/双引号。
    无 `=` 或 key 为空的行忽略。
    """

    values: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if line.startswith("export "):
            line = line.removeprefix("export ").lstrip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        key, value = key.strip(), value.strip()
        if not sep or not key:
            continue
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]
        values[key] = value
    return values


def _dotenv_entries(path: Path, *, override: bool, existing: Mapping[str, str]) -> Dict[str, str]:
    """读取 `.env` 并过滤掉 existing 中已有的 key（override=False 时）。"""

    parsed = parse_dotenv_text(path.read_text(encoding="utf-8"))
    if override:
        return parsed
    return {key: value for key, value in parsed.items() if key not in existing}


def load_dotenv_if_present(*, workspace_root: Path, override: bool = False) -> Tuple[Optional[Path], Dict[str, str]]:
    """
    查找并解析 `.env`，返回 `(env_file 或 None, 待注入的 env)`。

    查找顺序：
    1. `SKILLS_CATALOG_ENV_FILE`（相对路径相对 workspace_root；不存在时抛 ValueError）
    2. `<workspace_root>/.env`（不存在则跳过）
    """

    ws = Path(workspace_root).resolve()
    explicit = _env_value(ENV_FILE_VAR)
    if explicit is not None:
        env_path = _anchor(explicit, ws)
        if not env_path.is_file():
            raise ValueError(f"env file not found: {env_path}")
    else:
        env_path = (ws / ".env").resolve()
        if not env_path.is_file():
            return None, {}
    return env_path, _dotenv_entries(env_path, override=override, existing=os.environ)


def discover_overlay_paths(*, workspace_root: Path, env: Optional[Mapping[str, str]] = None) -> List[Path]:
    """
    发现 overlay 配置（顺序即合并顺序，按 canonical path 去重）：
    1. `<workspace_root>/config/catalog.yaml`（存在时）
    2. `SKILLS_CATALOG_CONFIG_PATHS` 中列出的路径（`,` 或 `;` 分隔）
    """

    ws = Path(workspace_root).resolve()
    found: List[Path] = []

    default_overlay = (ws / DEFAULT_OVERLAY).resolve()
    if default_overlay.is_file():
        found.append(default_overlay)

    listed = _env_value(CONFIG_PATHS_VAR, env) or ""
    found.extend(_anchor(part.strip(), ws) for part in _PATH_LIST_SEP_RE.split(listed) if part.strip())

    return list(dict.fromkeys(found))


def _merge_tracking(
    target: Dict[str, Any],
    layer: Mapping[str, Any],
    *,
    label: str,
    sources: Dict[str, str],
    prefix: str = "",
) -> None:
    """按 `config.loader` 的合并语义把 layer 合入 target，并记录每个叶子字段由哪一层写入。"""

    def _mark_leaves(value: Any, dotted: str) -> None:
        if isinstance(value, Mapping):
            for k, v in value.items():
                _mark_leaves(v, f"{dotted}.{k}")
        else:
            sources[dotted] = label

    for key, value in layer.items():
        dotted = f"{prefix}.{key}" if prefix else str(key)
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            _merge_tracking(current, value, label=label, sources=sources, prefix=dotted)
        else:
            target[key] = deepcopy(value)
            _mark_leaves(value, dotted)


def _read_overlay(path: Path) -> Dict[str, Any]:
    """读取 overlay YAML；文件缺失或根节点不是 mapping 时抛 ValueError。"""

    if not path.is_file():
        raise ValueError(f"overlay config not found: {path}")
    return read_yaml_mapping(path)


@dataclass(frozen=True)
class ResolvedCatalogConfig:
    """
    有效配置 + 排障信息。

    - overlay_paths：实际参与合并的 overlay（按合并顺序）
    - env_file：读取到的 `.env`（未读取为 None）
    - env：`os.environ` 叠加 `.env` 注入项后的视图（requires.env 检查使用）
    - sources：叶子字段 -> `embedded_default` 或 `overlay:<path>`
    """

    config: CatalogConfig
    overlay_paths: List[str]
    env_file: Optional[str]
    env: Dict[str, str]
    sources: Dict[str, str]


def resolve_effective_config(
    *,
    workspace_root: Path,
    config_paths: Optional[List[Path]] = None,
    load_dotenv: bool = True,
) -> ResolvedCatalogConfig:
    """
    合并 embedded default < 发现的 overlays < config_paths，并校验为 `CatalogConfig`。

    异常：
    - ValueError：`.env`/overlay 缺失或 overlay 根节点非法
    - pydantic.ValidationError：合并结果不符合 schema
    """

    ws = Path(workspace_root).resolve()
    env: Dict[str, str] = dict(os.environ)
    env_file: Optional[Path] = None
    if load_dotenv:
        env_file, injected = load_dotenv_if_present(workspace_root=ws)
        env.update(injected)

    overlays = discover_overlay_paths(workspace_root=ws, env=env)
    for extra in config_paths or []:
        anchored = _anchor(extra, ws)
        if anchored not in overlays:
            overlays.append(anchored)

    merged: Dict[str, Any] = {}
    sources: Dict[str, str] = {}
    _merge_tracking(merged, load_default_config_dict(), label=EMBEDDED_DEFAULT_LABEL, sources=sources)
    for path in overlays:
        _merge_tracking(merged, _read_overlay(path), label=f"overlay:{path}", sources=sources)

    return ResolvedCatalogConfig(
        config=CatalogConfig.model_validate(merged),
        overlay_paths=[str(p) for p in overlays],
        env_file=str(env_file) if env_file is not None else None,
        env=env,
        sources=sources,
    )
