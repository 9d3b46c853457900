"""
版本工具模块。

提供版本号规范化、解析、排序、分类和分组等工具函数。
"""

import re
from typing import Any, Dict, List, Tuple

PRERELEASE_MARKERS = ("rc", "beta", "alpha")
STABLE = "stable"
PRE_RELEASE = "pre-release"

_VERSION_RE = re.compile(
    r'^(?P<release>\d+(?:\.\d+)*)'
    r'(?:[-.]?(?P<pre>alpha|beta|rc)\.?(?P<pre_num>\d*))?',
    re.IGNORECASE
)
_PRE_ORDER = {"alpha": 0, "beta": 1, "rc": 2}


def normalize_version(version_str: str) -> str:
    """
    规范化版本字符串，去掉上游的 go 前缀和首尾空白。

    参数:
        version_str: 版本字符串，例如 "go1.22.0"

    返回:
        规范化后的版本字符串，例如 "1.22.0"
    """
    version_str = (version_str or "").strip()
    if version_str.lower().startswith("go") and version_str[2:3].isdigit():
        return version_str[2:]
    return version_str


def classify_version(version_str: str) -> str:
    """
    根据版本字符串中的预发布标记判断发布类型。

    参数:
        version_str: 版本字符串

    返回:
        "stable" 或 "pre-release"
    """
    lowered = version_str.lower()
    if any(marker in lowered for marker in PRERELEASE_MARKERS):
        return PRE_RELEASE
    return STABLE


def parse_version(version_str: str) -> Tuple:
    """
    解析版本字符串为可比较的元组。

    正式版排在同号预发布版之后，例如 1.22.0 > 1.22rc2 > 1.22beta1。
    无法解析的字符串排在最后。

    参数:
        version_str: 版本字符串

    返回:
        版本元组 ((major, minor, patch), 预发布阶段, 预发布序号)
    """
    match = _VERSION_RE.match(normalize_version(version_str))
    if not match:
        return ((-1,), -1, 0)

    release = [int(p) for p in match.group("release").split(".")]
    while len(release) < 3:
        release.append(0)

    pre = match.group("pre")
    if pre:
        pre_num = int(match.group("pre_num") or 0)
        return (tuple(release), _PRE_ORDER[pre.lower()], pre_num)
    return (tuple(release), len(_PRE_ORDER), 0)


def sort_versions_desc(versions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    按版本号降序排列版本列表。

    参数:
        versions: 版本信息列表

    返回:
        排序后的版本列表
    """
    return sorted(
        versions,
        key=lambda v: parse_version(v.get("version", "")),
        reverse=True
    )


def group_versions_by_minor(versions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    按 major.minor 分组版本列表。

    参数:
        versions: 版本信息列表

    返回:
        分组后的版本列表，每个分组包含 series、versions 和 has_stable
    """
    groups: Dict[str, Dict[str, Any]] = {}

    for v in sort_versions_desc(versions):
        release = parse_version(v.get("version", ""))[0]
        series = ".".join(str(p) for p in release[:2]) if release[0] >= 0 else "other"

        group = groups.setdefault(series, {
            "series": series,
            "versions": [],
            "has_stable": False
        })
        group["versions"].append(v)
        if classify_version(v.get("version", "")) == STABLE:
            group["has_stable"] = True

    return list(groups.values())
