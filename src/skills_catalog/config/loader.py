"""
配置 schema 与 YAML 加载。

规则：
- 多层配置按顺序合并，后一层覆盖前一层：mapping 递归合并，list 与标量整体替换；
- 所有模型拒绝未知字段，拼写错误会在校验时暴露而不是被忽略；
- 内置默认值见 `skills_catalog/assets/default.yaml`。
"""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
import re
from typing import Any, Dict, Iterable, List, Literal, Mapping, MutableMapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, field_validator

_NAMESPACE_SEGMENT_RE = re.compile(r"[a-z0-9][a-z0-9-]{0,62}[a-z0-9]")
MAX_NAMESPACE_SEGMENTS = 7


def namespace_is_valid(value: Any) -> bool:
    """namespace 由 1..7 个 `:` 连接的 segment 组成；segment 为 2..64 位小写 slug。"""

    if not isinstance(value, str):
        return False
    segments = value.split(":")
    if len(segments) > MAX_NAMESPACE_SEGMENTS:
        return False
    return all(_NAMESPACE_SEGMENT_RE.fullmatch(segment) for segment in segments)


def merge_layer(target: MutableMapping[str, Any], layer: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """把 layer 合入 target（原地修改并返回 target）。"""

    for key, value in layer.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            merge_layer(current, value)
        else:
            target[key] = deepcopy(value)
    return target


class _StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class LoggingConfig(_StrictModel):
    """日志配置（只在 CLI 入口生效；库代码只使用 module logger）。"""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"

    @field_validator("level", mode="before")
    @classmethod
    def _normalize_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value


class SkillsConfig(_StrictModel):
    """skills 配置：spaces/sources 定义 catalog，其余段落控制扫描、匹配、分发与 lint。"""

    class Space(_StrictModel):
        """一个 namespace 及其挂载的 source id 列表。"""

        id: str
        namespace: str
        sources: List[str] = Field(default_factory=list)
        enabled: bool = True

        @field_validator("namespace")
        @classmethod
        def _check_namespace(cls, value: str) -> str:
            if not namespace_is_valid(value):
                raise ValueError("skills.spaces[].namespace is invalid")
            return value

    class Source(_StrictModel):
        """
        skill 来源。

        - `filesystem`：`options.root`（相对路径相对 workspace root）
        - `in-memory`：`options.namespace`（对应 `in_memory_registry` 的 key）

        type 在这里不做枚举限制，由 preflight 报告不支持的类型。
        """

        id: str
        type: str
        options: Dict[str, Any] = Field(default_factory=dict)

    class Scan(_StrictModel):
        """目录遍历边界与扫描缓存策略。"""

        ignore_dot_entries: StrictBool = True
        max_depth: StrictInt = Field(default=99, ge=0)
        max_dirs_per_root: StrictInt = Field(default=100000, ge=0)
        max_frontmatter_bytes: StrictInt = Field(default=65536, ge=1)
        refresh_policy: Literal["always", "ttl", "manual"] = "always"
        ttl_sec: StrictInt = Field(default=300, ge=1)

    class Matching(_StrictModel):
        """
        请求匹配参数（词法打分，确定性）。

        说明：
        - score = name_weight * 名称词命中数 + description_weight * 描述词命中数 + 名称整体命中奖励
        - 低于 min_score 的候选不进入结果
        """

        name_weight: float = Field(default=3.0, ge=0.0)
        description_weight: float = Field(default=1.0, ge=0.0)
        exact_name_bonus: float = Field(default=5.0, ge=0.0)
        min_score: float = Field(default=1.0, ge=0.0)
        max_results: StrictInt = Field(default=5, ge=1)
        stopwords_extra: List[str] = Field(default_factory=list)

    class Requirements(_StrictModel):
        """
        requires.* 可用性检查策略。

        说明：
        - `missing_policy`：dispatch 时依赖缺失的处理（warn 保留并告警；skip_skill 丢弃；fail_fast 抛错）
        - `available_mcp`：当前运行环境已接入的 MCP 集成名称（MCP 本身对 catalog 不透明）
        """

        missing_policy: Literal["warn", "skip_skill", "fail_fast"] = "warn"
        check_tools: StrictBool = True
        check_env: StrictBool = True
        available_mcp: List[str] = Field(default_factory=list)

    class Injection(_StrictModel):
        """注入文本的大小上限，以及是否前置 `requires.skills` 依赖。"""

        max_bytes: Optional[int] = Field(default=None, ge=1)
        include_dependencies: StrictBool = True

    class Lint(_StrictModel):
        # 0 表示关闭 description 长度检查
        min_description_chars: StrictInt = Field(default=0, ge=0)

    spaces: List[Space] = Field(default_factory=list)
    sources: List[Source] = Field(default_factory=list)
    scan: Scan = Field(default_factory=Scan)
    matching: Matching = Field(default_factory=Matching)
    requirements: Requirements = Field(default_factory=Requirements)
    injection: Injection = Field(default_factory=Injection)
    lint: Lint = Field(default_factory=Lint)


class CatalogConfig(_StrictModel):
    """配置根对象。"""

    config_version: int = Field(default=1, ge=1)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    skills: SkillsConfig = Field(default_factory=SkillsConfig)


def read_yaml_mapping(path: Path) -> Dict[str, Any]:
    """
    读取 YAML 配置文件。

    异常：
    - FileNotFoundError：文件不存在
    - ValueError：根节点不是 mapping（空文件视为 `{}`）
    """

    if not path.is_file():
        raise FileNotFoundError(f"config file not found: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"config root must be a mapping(dict): {path}")
    return data


def load_config_dicts(config_dicts: Iterable[Mapping[str, Any]]) -> CatalogConfig:
    """按顺序合并多层 dict 配置并校验为 `CatalogConfig`。"""

    merged: Dict[str, Any] = {}
    for layer in config_dicts:
        if layer:
            merge_layer(merged, layer)
    return CatalogConfig.model_validate(merged)


def load_config(config_paths: Iterable[Path]) -> CatalogConfig:
    """按顺序读取并合并多个 YAML 文件（后者覆盖前者）。"""

    return load_config_dicts([read_yaml_mapping(Path(p)) for p in config_paths])
