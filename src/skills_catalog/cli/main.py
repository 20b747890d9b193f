"""
skills-catalog CLI（skills preflight/scan/lint/match/show/dispatch）。

约束：
- argparse 子命令；stdout 只输出机器可读 JSON（`dispatch --raw` 例外），失败时同样输出 JSON
- 日志统一写 stderr，级别取 `--log-level` > `SKILLS_CATALOG_LOG_LEVEL` > 配置 `logging.level`

exit code：
- preflight：0 / 10（有 error）/ 12（仅 warning）
- scan：0 / 11（有 error）/ 12（仅 warning）
- lint：0 / 13（有 error）/ 12（仅 warning）
- match：0 / 14（无结果）/ 11（配置或扫描失败）
- show：0 / 22（未找到或名称歧义）/ 11（其它失败）
- dispatch：0 / 14（无选中）/ 11（框架错误）
- 参数错误：2
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, field
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import yaml
from pydantic import ValidationError

from skills_catalog import bootstrap
from skills_catalog.core.errors import FrameworkError, FrameworkIssue
from skills_catalog.core.logging_setup import configure_logging
from skills_catalog.core.utf8 import ensure_utf8_stdio
from skills_catalog.skills.manager import SkillsManager
from skills_catalog.skills.models import ScanReport, issue_to_jsonable

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_USAGE = 2
EXIT_CONFIG_ERRORS = 10
EXIT_SCAN_ERRORS = 11
EXIT_WARNINGS_ONLY = 12
EXIT_LINT_ERRORS = 13
EXIT_NOTHING_SELECTED = 14
EXIT_SKILL_NOT_FOUND = 22

_NOT_FOUND_CODES = frozenset({"SKILL_UNKNOWN", "SKILL_AMBIGUOUS_NAME"})


def _emit(args: argparse.Namespace, obj: Dict[str, Any]) -> None:
    if getattr(args, "pretty", False):
        print(json.dumps(obj, ensure_ascii=False, indent=2))
    else:
        print(json.dumps(obj, ensure_ascii=False, separators=(",", ":")))


def _jsonable_issues(issues: Sequence[FrameworkIssue]) -> List[Dict[str, Any]]:
    return [issue_to_jsonable(it) for it in issues]


class _SessionFailed(Exception):
    def __init__(self, issue: FrameworkIssue) -> None:
        super().__init__(issue.message)
        self.issue = issue


def _workspace_root(raw: str) -> Path:
    try:
        ws = Path(raw).expanduser().resolve()
    except (OSError, RuntimeError) as exc:
        raise _SessionFailed(
            FrameworkIssue(
                code="CLI_WORKSPACE_ROOT_INVALID",
                message="Workspace root is invalid.",
                details={"workspace_root": raw, "reason": str(exc)},
            )
        ) from exc
    if not ws.is_dir():
        raise _SessionFailed(
            FrameworkIssue(
                code="CLI_WORKSPACE_ROOT_NOT_FOUND",
                message="Workspace root is not found or not a directory.",
                details={"workspace_root": str(ws)},
            )
        )
    return ws


def _resolve_config(args: argparse.Namespace, ws: Path) -> bootstrap.ResolvedCatalogConfig:
    use_dotenv = not args.no_dotenv
    if use_dotenv:
        try:
            bootstrap.load_dotenv_if_present(workspace_root=ws)
        except (OSError, ValueError) as exc:
            raise _SessionFailed(
                FrameworkIssue(
                    code="CLI_DOTENV_LOAD_FAILED",
                    message="Dotenv load failed.",
                    details={"workspace_root": str(ws), "reason": str(exc)},
                )
            ) from exc

    try:
        return bootstrap.resolve_effective_config(
            workspace_root=ws,
            config_paths=[Path(p) for p in args.config],
            load_dotenv=use_dotenv,
        )
    except ValidationError as exc:
        issue = FrameworkIssue(code="CLI_CONFIG_INVALID", message="Config is invalid.", details={"reason": str(exc)})
        raise _SessionFailed(issue) from exc
    except (OSError, ValueError, yaml.YAMLError) as exc:
        issue = FrameworkIssue(code="CLI_CONFIG_LOAD_FAILED", message="Config load failed.", details={"reason": str(exc)})
        raise _SessionFailed(issue) from exc


@dataclass
class _Session:
    """一次 CLI 调用的 bootstrap 结果；失败时 `issues` 非空且没有 manager。"""

    args: argparse.Namespace
    workspace_root: Optional[Path] = None
    resolved: Optional[bootstrap.ResolvedCatalogConfig] = None
    issues: List[FrameworkIssue] = field(default_factory=list)

    @classmethod
    def open(cls, args: argparse.Namespace) -> "_Session":
        """workspace -> .env -> overlays -> logging；任何一步失败都记为 issue 而不是抛出。"""

        session = cls(args=args)
        try:
            session.workspace_root = _workspace_root(str(args.workspace_root))
            session.resolved = _resolve_config(args, session.workspace_root)
        except _SessionFailed as exc:
            session.issues.append(exc.issue)

        default_level = session.resolved.config.logging.level if session.resolved is not None else "WARNING"
        configure_logging(args.log_level, default=default_level)
        return session

    @property
    def ok(self) -> bool:
        return self.resolved is not None and not self.issues

    def manager(self) -> SkillsManager:
        assert self.resolved is not None and self.workspace_root is not None
        return SkillsManager(
            workspace_root=self.workspace_root,
            skills_config=self.resolved.config.skills,
            environ=self.resolved.env,
        )

    def issues_payload(self, issues: Sequence[FrameworkIssue]) -> Dict[str, Any]:
        """`{issues, stats}`：stats 带上 workspace/overlays/env_file 便于排查配置来源。"""

        warnings_total = sum(1 for it in issues if it.is_warning)
        return {
            "issues": _jsonable_issues(issues),
            "stats": {
                "workspace_root": str(self.workspace_root or self.args.workspace_root),
                "overlay_paths": list(self.resolved.overlay_paths) if self.resolved is not None else [],
                "env_file": self.resolved.env_file if self.resolved is not None else None,
                "issues_total": len(issues),
                "errors_total": len(issues) - warnings_total,
                "warnings_total": warnings_total,
            },
        }


def _level_exit(issues: Sequence[FrameworkIssue], *, on_error: int) -> int:
    if any(not it.is_warning for it in issues):
        return on_error
    return EXIT_WARNINGS_ONLY if issues else EXIT_OK


def _report_exit(report: ScanReport) -> int:
    return _level_exit([*report.errors, *report.warnings], on_error=EXIT_SCAN_ERRORS)


def _failed_scan(errors: List[FrameworkIssue]) -> ScanReport:
    return ScanReport(
        scan_id="scan_cli_error",
        skills=[],
        errors=errors,
        warnings=[],
        stats={"spaces_total": 0, "sources_total": 0, "skills_total": 0},
    )


def _cmd_preflight(session: _Session) -> int:
    issues = list(session.issues)
    if session.ok:
        issues.extend(session.manager().preflight())
    _emit(session.args, session.issues_payload(issues))
    return _level_exit(issues, on_error=EXIT_CONFIG_ERRORS)


def _cmd_scan(session: _Session) -> int:
    """输出 ScanReport；重名导致 scan 抛错时输出 manager 记录的报告。"""

    if not session.ok:
        report = _failed_scan(session.issues)
    else:
        mgr = session.manager()
        try:
            report = mgr.scan()
        except FrameworkError as exc:
            report = mgr.last_scan_report or _failed_scan([exc.to_issue()])
    _emit(session.args, report.to_jsonable())
    return _report_exit(report)


def _cmd_lint(session: _Session) -> int:
    issues = list(session.issues)
    if session.ok:
        issues.extend(session.manager().lint())
    _emit(session.args, session.issues_payload(issues))
    return _level_exit(issues, on_error=EXIT_LINT_ERRORS)


def _cmd_match(session: _Session) -> int:
    args = session.args
    payload: Dict[str, Any] = {"request": args.request, "results": [], "issues": _jsonable_issues(session.issues)}
    if not session.ok:
        _emit(args, payload)
        return EXIT_SCAN_ERRORS

    limit = args.limit if args.limit is not None and args.limit >= 1 else None
    try:
        results = session.manager().match(args.request, limit=limit, include_skipped=args.include_skipped)
    except FrameworkError as exc:
        payload["issues"] = _jsonable_issues([exc.to_issue()])
        _emit(args, payload)
        return EXIT_SCAN_ERRORS

    payload["results"] = [r.to_jsonable() for r in results]
    _emit(args, payload)
    return EXIT_OK if results else EXIT_NOTHING_SELECTED


def _cmd_show(session: _Session) -> int:
    args = session.args
    failed: Dict[str, Any] = {"skill": None, "rendered": None}
    if not session.ok:
        _emit(args, {**failed, "issues": _jsonable_issues(session.issues)})
        return EXIT_SCAN_ERRORS

    mgr = session.manager()
    try:
        skill = mgr.get_skill(args.name, namespace=args.namespace)
        rendered = mgr.render_injected_skill(skill)
    except FrameworkError as exc:
        _emit(args, {**failed, "issues": _jsonable_issues([exc.to_issue()])})
        return EXIT_SKILL_NOT_FOUND if exc.code in _NOT_FOUND_CODES else EXIT_SCAN_ERRORS

    _emit(args, {"skill": skill.to_metadata_dict(), "rendered": rendered, "issues": []})
    return EXIT_OK


def _cmd_dispatch(session: _Session) -> int:
    """选择并渲染 skills；`--raw` 只打印渲染文本（供管道直接拼进 prompt）。"""

    args = session.args
    failed: Dict[str, Any] = {"request": args.request, "selected": [], "warnings": [], "rendered": ""}
    if not session.ok:
        _emit(args, {**failed, "issues": _jsonable_issues(session.issues)})
        return EXIT_SCAN_ERRORS

    try:
        result = session.manager().dispatch(args.request)
    except FrameworkError as exc:
        logger.warning("Dispatch failed: %s", exc)
        _emit(args, {**failed, "issues": _jsonable_issues([exc.to_issue()])})
        return EXIT_SCAN_ERRORS

    if not args.raw:
        _emit(args, {**result.to_jsonable(), "issues": []})
    elif result.rendered:
        print(result.rendered)
    return EXIT_OK if result.selected else EXIT_NOTHING_SELECTED


Command = Callable[[_Session], int]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="skills-catalog",
        description="Skill catalog: scan, lint, match and dispatch SKILL.md documents.",
    )
    commands = parser.add_subparsers(dest="command", required=True)
    skills = commands.add_parser("skills", help="Skills commands")
    sub = skills.add_subparsers(dest="skills_cmd", required=True)

    def add(name: str, handler: Command, help_text: str, *, aliases: Sequence[str] = ()) -> argparse.ArgumentParser:
        p = sub.add_parser(name, aliases=list(aliases), help=help_text)
        p.set_defaults(handler=handler)
        p.add_argument("--workspace-root", default=".", help="Workspace root directory (default: .)")
        p.add_argument("--config", action="append", default=[], help="Overlay config YAML path (repeatable).")
        p.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")
        p.add_argument("--no-dotenv", action="store_true", help="Do not read .env from the workspace root.")
        p.add_argument("--log-level", default=None, help="stderr log level (DEBUG/INFO/WARNING/ERROR).")
        return p

    add("preflight", _cmd_preflight, "Check skills config without touching the filesystem", aliases=["validate-config"])
    add("scan", _cmd_scan, "Scan skills (front matter only)")
    add("lint", _cmd_lint, "Check skill documents for consistency")

    match = add("match", _cmd_match, "Score skills against a free-text request")
    match.add_argument("--request", required=True, help="Free-text request.")
    match.add_argument("--limit", type=int, default=None, help="Max results (>=1; default: skills.matching.max_results).")
    match.add_argument("--include-skipped", action="store_true", help="Keep results whose skip_when matched.")

    show = add("show", _cmd_show, "Render one skill's injected body")
    show.add_argument("name", help="Skill name.")
    show.add_argument("--namespace", default=None, help="Space namespace (required when the name is ambiguous).")

    dispatch = add("dispatch", _cmd_dispatch, "Select and render skills for a request")
    dispatch.add_argument("--request", required=True, help="Free-text request (may contain $[namespace].skill mentions).")
    dispatch.add_argument("--raw", action="store_true", help="Print the rendered text instead of JSON.")

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    console_scripts 入口；返回 exit code 而不是直接退出，便于测试。

    `argv` 不含程序名；None 时读取 `sys.argv[1:]`。
    """

    ensure_utf8_stdio()
    try:
        args = _build_parser().parse_args(None if argv is None else list(argv))
    except SystemExit as exc:
        # --help 退出码 0；参数错误 2
        return EXIT_USAGE if exc.code is None else int(exc.code)

    return args.handler(_Session.open(args))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
