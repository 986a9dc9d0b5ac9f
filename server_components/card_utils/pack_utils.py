import importlib.util
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from .card import Card
from .pack import CardPack, CardRegistry

PACK_MANIFEST = "pack.json"


def load_card_module(path: Path, module_name: str):
    """Import a card file by path. Errors from the card's own code propagate."""
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load card module from {path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception:
        sys.modules.pop(module_name, None)
        raise
    return module


def pack_from_path(pack_dir: Path, base_url: str = "", results: Optional[Dict[str, Any]] = None) -> CardPack:
    """
    Load a pack directory: a pack.json manifest plus one .py file per card.

    :param pack_dir: Directory like "<cards>/weather". The directory name is the pack id.
    :param results: Optional stats dict; card files that fail to import are
        recorded under "errors" and skipped instead of failing the whole pack.
    """
    with open(pack_dir / PACK_MANIFEST, 'r') as f:
        data = json.load(f)

    pack = CardPack(
        pack_name=pack_dir.name,
        friendly_name=data.get('friendly_name') or data.get('pack_name'),
        hidden=bool(data.get('hidden', False)),
    )

    cards_dir = pack_dir / data.get('cards_dir', '')
    for card_file in sorted(cards_dir.glob("*.py")):
        if card_file.name.startswith("_"):
            continue
        card_name = card_file.stem
        module_name = f"card_packs.{pack.pack_name}.{card_name}"
        try:
            module = load_card_module(card_file, module_name)
        except Exception as e:
            if results is None:
                raise
            results["errors"].append(f"{pack.pack_name}/{card_file.name}: {e}")
            continue
        pack.add_card(Card.from_module(pack.pack_name, card_name, module, base_url=base_url))

    return pack


def load_registry(cards_dir: Path, base_url: str = "", logger=None) -> CardRegistry:
    """
    Scan the cards directory and build the registry.
    Every sub-directory holding a pack.json is a pack; anything else is ignored.
    """
    registry = CardRegistry()
    results = {"packs": [], "cards": 0, "errors": []}

    if not cards_dir.is_dir():
        if logger:
            logger.warning("cards_directory_missing", cards_dir=str(cards_dir))
        return registry

    for pack_dir in sorted(cards_dir.iterdir()):
        if not pack_dir.is_dir() or pack_dir.name.startswith((".", "_")):
            continue
        if not (pack_dir / PACK_MANIFEST).exists():
            continue
        try:
            pack = pack_from_path(pack_dir, base_url=base_url, results=results)
        except json.JSONDecodeError:
            results["errors"].append(f"{pack_dir.name}/{PACK_MANIFEST}: Invalid JSON")
            continue
        except OSError as e:
            results["errors"].append(f"{pack_dir.name}: {e}")
            continue
        registry.add_pack(pack)
        results["packs"].append(pack.pack_name)
        results["cards"] += len(pack)

    if logger:
        logger.info("card_packs_loaded", cards_dir=str(cards_dir), packs=results["packs"], cards=results["cards"])
        if results["errors"]:
            logger.warning("card_pack_load_errors", errors=results["errors"])

    return registry
