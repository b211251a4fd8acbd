"""``{{KEY}}`` placeholder rendering for configuration templates."""

from __future__ import annotations

import typing as typ

from k3d_gitops.logging import get_logger, log_info

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

logger = get_logger(__name__)


def render_text(template: str, values: cabc.Mapping[str, str]) -> str:
    """Replace every ``{{KEY}}`` in ``template`` with ``values[KEY]``.

    Placeholders without a value are left untouched.
    """
    for key, value in values.items():
        template = template.replace(f"{{{{{key}}}}}", value)
    return template


def parse_assignments(assignments: cabc.Iterable[str]) -> dict[str, str]:
    """Parse ``KEY=VALUE`` strings; the value may itself contain ``=``.

    Raises:
        ValueError: If an assignment has no ``=`` or an empty key.

    """
    values: dict[str, str] = {}
    for item in assignments:
        key, sep, value = item.partition("=")
        if not sep or not key:
            msg = f"expected KEY=VALUE, got {item!r}"
            raise ValueError(msg)
        values[key] = value
    return values


def render_templates(
    source: Path, output_dir: Path, values: cabc.Mapping[str, str]
) -> list[Path]:
    """Render a template file, or every file in a template directory.

    Args:
        source: Template file or directory of templates. Subdirectories are
            not descended into.
        output_dir: Directory receiving files of the same names; created
            when missing.
        values: Placeholder values.

    Returns:
        Paths written, in name order.

    Raises:
        FileNotFoundError: If ``source`` does not exist.

    """
    if source.is_dir():
        templates = sorted(path for path in source.iterdir() if path.is_file())
    elif source.is_file():
        templates = [source]
    else:
        msg = f"Template source not found: {source}"
        raise FileNotFoundError(msg)

    output_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for template in templates:
        target = output_dir / template.name
        target.write_text(
            render_text(template.read_text(encoding="utf-8"), values),
            encoding="utf-8",
        )
        log_info(logger, "Generated %s", target)
        written.append(target)
    return written
