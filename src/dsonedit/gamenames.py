from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Callable, Iterable

logger = logging.getLogger(__name__)

# Stat database keys that never appear in a data file.
BUILTIN_NAMES = (
    "MONSTER_ENCOUNTERED",
    "AMBUSHED",
    "CURIO_INVESTIGATED",
    "TRAIT_APPLIED",
    "DEATHS_DOOR_APPLIED",
    "ROOM_VISITED",
    "BATTLE_COMPLETED",
    "HALLWAY_STEP_COMPLETED",
    "MONSTER_DEFEATED",
    "UNDEFINED",
)

_LINE_BREAK = re.compile(r"\r?\n")
_INVENTORY_ITEM = re.compile(r'inventory_item:\s?\.type\s?"([a-z_]*)"\s*\.id\s*"([a-z_]*)".*')
_TUTORIAL_POPUP = re.compile(r".*tutorial_popup\.([a-z_]*)\.png")

NameParser = Callable[[Path, set[str]], None]


def base_name(path: Path) -> str:
    """File name up to its first dot, unless the name starts with one."""
    name = path.name
    dot = name.find(".")
    return name[:dot] if dot > 0 else name


def _read_text(path: Path) -> str:
    return path.read_bytes().decode("utf-8-sig", errors="replace")


def _read_json(path: Path) -> dict:
    data = json.loads(_read_text(path))
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object at the top of {path.name}")
    return data


def _array_ids(data: dict, array: str, key: str = "id") -> list[str]:
    return [str(entry[key]) for entry in data.get(array) or []]


def _parse_base_name(path: Path, names: set[str]) -> None:
    names.add(base_name(path))


def _parse_upgrades(path: Path, names: set[str]) -> None:
    names.add(base_name(path))
    for tree_id in _array_ids(_read_json(path), "trees"):
        names.add(tree_id)
        # class-qualified ids ("crusader.smite") are also saved without the class
        parts = tree_id.split(".")
        if len(parts) == 2:
            names.add(parts[1])


def _parse_camping_skills(path: Path, names: set[str]) -> None:
    for skill in _read_json(path).get("skills") or []:
        skill_id = str(skill["id"])
        names.add(skill_id)
        for hero_class in skill.get("hero_classes") or []:
            names.add(f"{hero_class}.{skill_id}")


def _parse_quest_types(path: Path, names: set[str]) -> None:
    data = _read_json(path)
    names.update(_array_ids(data, "types"))
    names.update(_array_ids(data, "goals"))


def _parse_building(path: Path, names: set[str]) -> None:
    names.add(base_name(path))
    data = _read_json(path).get("data") or {}
    names.update(_array_ids(data, "activities"))


def _parse_events(path: Path, names: set[str]) -> None:
    names.add(base_name(path))
    names.update(_array_ids(_read_json(path), "events"))


def _parse_inventory(path: Path, names: set[str]) -> None:
    for line in _LINE_BREAK.split(_read_text(path)):
        match = _INVENTORY_ITEM.fullmatch(line)
        if match:
            names.update(group for group in match.groups() if group)


def _parse_curio_props(path: Path, names: set[str]) -> None:
    # first CSV column
    for line in _LINE_BREAK.split(_read_text(path)):
        prop, comma, _ = line.partition(",")
        if comma and prop:
            names.add(prop)


def _array_parser(array: str, key: str = "id") -> NameParser:
    def parse(path: Path, names: set[str]) -> None:
        names.update(_array_ids(_read_json(path), array, key))

    return parse


def _parse_tutorial_popup(path: Path, names: set[str]) -> None:
    match = _TUTORIAL_POPUP.fullmatch(path.as_posix())
    if match and match.group(1):
        names.add(match.group(1))


PARSERS: dict[str, NameParser] = {
    ".info.darkest": _parse_base_name,
    ".upgrades.json": _parse_upgrades,
    ".camping_skills.json": _parse_camping_skills,
    ".dungeon.json": _parse_base_name,
    ".types.json": _parse_quest_types,
    "quirk_library.json": _array_parser("quirks"),
    ".building.json": _parse_building,
    ".events.json": _parse_events,
    ".inventory.items.darkest": _parse_inventory,
    ".inventory.system_configs.darkest": _parse_inventory,
    ".trinkets.json": _array_parser("entries"),
    "curio_props.csv": _parse_curio_props,
    "obstacle_definitions.json": _array_parser("props", "name"),
    "quest.plot_quests.json": _array_parser("plot_quests"),
    ".png": _parse_tutorial_popup,
}


def collect_names(roots: Iterable[str | os.PathLike[str]]) -> set[str]:
    """
    Gather hashed-name candidates from game or mod root directories.

    Every file under each root is offered to the parsers whose suffix it
    ends with. A file that fails to parse is logged and skipped; roots that
    are not directories are ignored.
    """
    names: set[str] = set(BUILTIN_NAMES)
    for root_value in roots:
        root = Path(root_value).expanduser()
        if not root.is_dir():
            logger.warning("Skipping %s: not a directory", root)
            continue
        for path in sorted(p for p in root.rglob("*") if p.is_file()):
            filename = path.name
            for suffix, parser in PARSERS.items():
                if not filename.endswith(suffix):
                    continue
                try:
                    parser(path, names)
                except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
                    logger.warning("Error opening/parsing %s: %s", path, exc)
    return names


def format_names(names: Iterable[str]) -> str:
    """Render names one per line, sorted, in the form ``parse_names`` reads."""
    return "".join(f"{name}\n" for name in sorted(set(names)) if name)


__all__ = ["BUILTIN_NAMES", "PARSERS", "base_name", "collect_names", "format_names"]
