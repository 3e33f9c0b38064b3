# src/jac_agents/workspace/file_tree.py

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field


@dataclass(slots=True)
class TreeNode:
    name: str
    path: str
    is_file: bool
    children: dict[str, TreeNode] = field(default_factory=dict)


def build_file_tree(paths: Iterable[str]) -> TreeNode:
    """Nest flat "a/b/c.py" paths into a tree rooted at an unnamed folder."""
    root = TreeNode(name="", path="", is_file=False)
    for raw in paths:
        parts = [p for p in (raw or "").strip().split("/") if p]
        current = root
        for i, part in enumerate(parts):
            node = current.children.get(part)
            if node is None:
                node = TreeNode(
                    name=part,
                    path="/".join(parts[: i + 1]),
                    is_file=(i == len(parts) - 1),
                )
                current.children[part] = node
            elif i < len(parts) - 1:
                # "a" listed as a file and later as a folder ("a/b"): it is a folder.
                node.is_file = False
            current = node
    return root


def sorted_children(node: TreeNode) -> list[TreeNode]:
    """Folders first, then files; each group alphabetical, case-insensitive."""
    return sorted(node.children.values(), key=lambda n: (n.is_file, n.name.lower()))


def render_tree(node: TreeNode, *, max_lines: int | None = None) -> list[str]:
    lines: list[str] = []

    def walk(n: TreeNode, depth: int) -> None:
        for child in sorted_children(n):
            if max_lines is not None and len(lines) >= max_lines:
                return
            suffix = "" if child.is_file else "/"
            lines.append(f"{'  ' * depth}{child.name}{suffix}")
            if not child.is_file:
                walk(child, depth + 1)

    walk(node, 0)
    return lines


def count_files(node: TreeNode) -> int:
    if node.is_file:
        return 1
    return sum(count_files(c) for c in node.children.values())
