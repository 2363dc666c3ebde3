"""
Deterministic text and JSON rendering of query results.
"""
import json
import unicodedata
from typing import Any, Dict, List

from modquery.query.results import (
    AllPathsResult,
    AnnotatedPath,
    PathResult,
    ShowExtensionResult,
    ShowResult,
    TreeEntry,
    TreeResult,
)


CONNECTORS = {
    'utf8': {'branch': '├───', 'last': '└───', 'pipe': '│   ', 'space': '    '},
    'ascii': {'branch': '|___', 'last': '`___', 'pipe': '|   ', 'space': '    '},
}


def to_ascii(text: str) -> str:
    """Transliterate text to plain ASCII."""
    normalized = unicodedata.normalize('NFKD', text)
    return normalized.encode('ascii', 'ignore').decode('ascii')


def _entry_label(entry: TreeEntry) -> str:
    label = str(entry.key)
    if entry.extension is not None:
        label += f" (via {entry.extension})"
    if entry.reference_only:
        label += " (*)"
    elif entry.truncated:
        label += " ..."
    return label


def render_tree(result: TreeResult, charset: str = 'utf8') -> str:
    entries = result.entries
    connectors = CONNECTORS[charset]

    # An entry is the last of its siblings if no later entry at the same depth
    # appears before the group closes
    is_last = [True] * len(entries)
    open_depths = set()
    for i in range(len(entries) - 1, -1, -1):
        depth = entries[i].depth
        is_last[i] = depth not in open_depths
        open_depths = {d for d in open_depths if d < depth}
        open_depths.add(depth)

    lines: List[str] = []
    ancestors_last: List[bool] = []
    for i, entry in enumerate(entries):
        if entry.depth == 0:
            lines.append(_entry_label(entry))
            ancestors_last = [True]
            continue
        prefix = ''.join(
            connectors['space'] if ancestors_last[d] else connectors['pipe']
            for d in range(1, entry.depth)
        )
        connector = connectors['last'] if is_last[i] else connectors['branch']
        lines.append(f"{prefix}{connector}{_entry_label(entry)}")
        ancestors_last = ancestors_last[:entry.depth] + [is_last[i]]
    return '\n'.join(lines)


def _render_path(path: AnnotatedPath) -> str:
    parts = [str(path.nodes[0])]
    for edge in path.edges:
        step = str(edge.target)
        if not edge.is_direct:
            step += f" ({edge.describe()})"
        parts.append(step)
    return ' -> '.join(parts)


def _keys(keys) -> str:
    return ', '.join(str(key) for key in keys)


def render_path(result: PathResult) -> str:
    if not result.found:
        return f"No path found from {_keys(result.sources)} to {_keys(result.targets)}"
    return _render_path(result.path)


def render_all_paths(result: AllPathsResult) -> str:
    if not result.paths:
        return f"No path found from {_keys(result.sources)} to {_keys(result.targets)}"
    lines = [_render_path(path) for path in result.paths]
    if result.context:
        lines.append("Other dependencies:")
        for edge in result.context:
            step = f"  {edge.source} -> {edge.target}"
            if not edge.is_direct:
                step += f" ({edge.describe()})"
            lines.append(step)
    if result.truncated:
        lines.append(f"(output truncated after {len(result.paths)} paths: enumeration limit reached)")
    return '\n'.join(lines)


def render_show_extension(result: ShowExtensionResult) -> str:
    lines: List[str] = []
    for report in result.reports:
        lines.append(f"## {report.extension}:")
        if report.is_empty:
            lines.append("No usages found.")
            lines.append("")
            continue
        lines.append("")
        lines.append("Fetched repositories:")
        for repo in report.repos:
            if repo.imported:
                lines.append(f"  - {repo.name} (imported by {_keys(repo.imported_by)})")
            else:
                lines.append(f"  - {repo.name} (not imported)")
        lines.append("")
        for usage in report.usages:
            lines.append(f"## Usage in {usage.module}")
            for tag in usage.tags:
                lines.append(f"  {tag}")
            imports = ', '.join(
                local if local == repo else f"{local}=\"{repo}\"" for local, repo in usage.imports
            )
            lines.append(f"  use_repo({imports})")
            lines.append("")
    return '\n'.join(lines).rstrip('\n')


def _format_value(value: Any) -> str:
    if isinstance(value, str):
        return json.dumps(value)
    if isinstance(value, (list, tuple)):
        return '[' + ', '.join(_format_value(item) for item in value) + ']'
    if isinstance(value, dict):
        return '{' + ', '.join(f"{json.dumps(str(k))}: {_format_value(v)}" for k, v in sorted(value.items())) + '}'
    if isinstance(value, bool):
        return 'True' if value else 'False'
    return str(value)


def render_show(result: ShowResult) -> str:
    lines: List[str] = []
    for reference, repo_name in result.repo_names.items():
        lines.append(f"## {reference}:")
        rule = dict(result.rules.get(repo_name, {}))
        rule_class = rule.pop('rule_class', 'repository_rule')
        lines.append(f"{rule_class}(")
        lines.append(f"  name = {json.dumps(repo_name)},")
        for key in sorted(rule):
            if key == 'name':
                continue
            lines.append(f"  {key} = {_format_value(rule[key])},")
        lines.append(")")
        lines.append("")
    return '\n'.join(lines).rstrip('\n')


def render_text(result, charset: str = 'utf8') -> str:
    """Render any query result as text in the given charset."""
    if isinstance(result, TreeResult):
        text = render_tree(result, charset)
    elif isinstance(result, PathResult):
        text = render_path(result)
    elif isinstance(result, AllPathsResult):
        text = render_all_paths(result)
    elif isinstance(result, ShowExtensionResult):
        text = render_show_extension(result)
    elif isinstance(result, ShowResult):
        text = render_show(result)
    else:
        raise TypeError(f"Cannot render {type(result).__name__}")
    return to_ascii(text) if charset == 'ascii' else text


def render_json(result, charset: str = 'utf8') -> str:
    data: Dict[str, Any] = result.to_dict()
    return json.dumps(data, indent=2, sort_keys=True, default=str, ensure_ascii=(charset == 'ascii'))


def render(result, output: str = 'text', charset: str = 'utf8') -> str:
    if output == 'json':
        return render_json(result, charset)
    return render_text(result, charset)
