"""Smart memory: compress, deduplicate and sync memory files across tools."""

import logging
import re

from mycelium.config import settings
from mycelium.core.registry import get_descriptor, resolve_path
from mycelium.models import ScannedMemory, SyncWriteResult

logger = logging.getLogger("mycelium.memory")

KEY_INSIGHT = re.compile(
    r"^[-*]\s*(Bug|Fix|Pattern|Important|Note|Key|Critical|Rule|Lesson|Remember):",
    re.IGNORECASE,
)


def compress_memory(content: str, max_lines: int, preserve_headers: bool = True) -> str:
    """Shrink memory to at most ``max_lines`` lines.

    Priority: markdown headers, then key-insight bullets (``- Bug: ...``,
    ``- Fix: ...``), then the most recent of the remaining lines.
    Content that already fits is returned unchanged.
    """
    lines = content.split("\n")
    if len(lines) <= max_lines:
        return content

    headers: list[str] = []
    insights: list[str] = []
    other: list[str] = []
    for line in lines:
        if line.startswith("#"):
            headers.append(line)
        elif KEY_INSIGHT.match(line):
            insights.append(line)
        else:
            other.append(line)

    kept = (headers if preserve_headers else []) + insights
    remaining = max_lines - len(kept)
    if remaining > 0:
        kept += other[-remaining:]
    return "\n".join(kept[:max_lines])


def merge_memory_files(files: list[str]) -> str:
    """Join memory files, dropping lines already seen (case/space-insensitive).

    Headers and blank lines are never deduplicated.
    """
    seen: set[str] = set()
    sections = []
    for content in files:
        unique = []
        for line in content.split("\n"):
            normalized = line.strip().lower()
            if not normalized or normalized.startswith("#"):
                unique.append(line)
            elif normalized not in seen:
                seen.add(normalized)
                unique.append(line)
        sections.append("\n".join(unique))
    return "\n\n".join(sections)


def load_managed_memory() -> list[ScannedMemory]:
    """Memory files imported into the managed memory/ directory."""
    if not settings.memory_dir.is_dir():
        return []
    return [
        ScannedMemory(
            name=path.stem,
            path=str(path),
            source="mycelium",
            content=path.read_text(encoding="utf-8"),
        )
        for path in sorted(settings.memory_dir.glob("*.md"))
    ]


async def sync_memory_to_tool(tool_id: str, files: list[ScannedMemory] | None = None) -> SyncWriteResult:
    """Write merged memory to the tool's global memory file.

    Only files whose scope the tool accepts are merged. The result is
    compressed to the tool's ``memory_max_lines`` when it has one.
    """
    desc = get_descriptor(tool_id)
    target = resolve_path(desc.paths.global_memory)
    if target is None:
        return SyncWriteResult(tool_id=tool_id, success=False, error="Tool has no global memory path")

    if files is None:
        files = load_managed_memory()
    selected = [f for f in files if f.scope in desc.scopes and f.content]
    merged = merge_memory_files([f.content for f in selected])
    if desc.memory_max_lines:
        merged = compress_memory(merged, desc.memory_max_lines)

    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(merged, encoding="utf-8")
    except OSError as e:
        logger.warning("Failed to write memory for %s: %s", tool_id, e)
        return SyncWriteResult(tool_id=tool_id, config_path=str(target), success=False, error=str(e))

    logger.info("Synced %d memory file(s) to %s", len(selected), target)
    return SyncWriteResult(tool_id=tool_id, config_path=str(target), written=[f.name for f in selected])
