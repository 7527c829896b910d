#!/usr/bin/env python3
"""
评审项目的 pytest 包装脚本。

模式对应 pyproject.toml 中登记的标记（unit / integration）：
  quick        只跑单元测试，适合提交前自检
  unit         同 quick
  integration  只跑控制器与 CLI 的完整流水线测试（HTTP 与 OCR 均为 mock）
  full         全部测试

示例：
  ./run_tests.py
  ./run_tests.py --mode full -k grouping --maxfail 1
  ./run_tests.py --mode full --cov services,controllers --cov-report term-missing
"""
import argparse
import subprocess
import sys
from typing import Dict, List, Optional, Tuple


# mode -> (pytest -m 表达式, 说明)
MODES: Dict[str, Tuple[Optional[str], str]] = {
    "quick": ("not integration", "单元测试"),
    "unit": ("not integration", "单元测试"),
    "integration": ("integration", "流水线集成测试"),
    "full": (None, "全部测试"),
}

BASE_ARGS = ["-v", "--tb=short", "--strict-markers"]


def build_pytest_command(
    mode: str,
    kexpr: Optional[str],
    durations: int,
    cov: Optional[str],
    cov_report: Optional[str],
    tests_path: str,
    maxfail: Optional[int] = None,
) -> List[str]:
    """
    组装 `python -m pytest ...` 命令。

    cov 接受逗号分隔的多个包名，每个生成一个 --cov；cov_report 只在启用覆盖率时生效。
    未知 mode 抛出 ValueError。
    """
    try:
        mark_expr, _ = MODES[mode]
    except KeyError:
        raise ValueError(f"unknown test mode '{mode}', expected one of {sorted(MODES)}") from None

    options = list(BASE_ARGS) + [f"--durations={durations}"]
    if mark_expr:
        options.extend(["-m", mark_expr])
    if kexpr:
        options.extend(["-k", kexpr])
    if maxfail and maxfail > 0:
        options.append(f"--maxfail={maxfail}")

    cov_targets = [t.strip() for t in (cov or "").split(",") if t.strip()]
    options.extend(f"--cov={t}" for t in cov_targets)
    if cov_targets and cov_report:
        options.append(f"--cov-report={cov_report}")

    return [sys.executable, "-m", "pytest", *options, tests_path]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the chat review test suite")
    parser.add_argument("--mode", choices=sorted(MODES), default="quick")
    parser.add_argument("-k", dest="kexpr", help="pytest keyword expression")
    parser.add_argument("--durations", type=int, default=10, help="report the N slowest tests")
    parser.add_argument("--cov", help="comma-separated packages to measure (needs pytest-cov)")
    parser.add_argument("--cov-report", help="coverage report type, e.g. term-missing")
    parser.add_argument("--maxfail", type=int, help="stop after N failures")
    parser.add_argument("--tests-path", default="tests")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    cmd = build_pytest_command(args.mode, args.kexpr, args.durations, args.cov, args.cov_report,
                               args.tests_path, maxfail=args.maxfail)
    print(f"🧪 {MODES[args.mode][1]}: {' '.join(cmd)}")
    returncode = subprocess.run(cmd).returncode
    print("\n✅ 测试通过" if returncode == 0 else f"\n❌ 测试失败 (exit {returncode})")
    return returncode


if __name__ == "__main__":
    sys.exit(main())
