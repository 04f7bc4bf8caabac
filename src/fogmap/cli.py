"""
FogMap CLI entrypoint.

This CLI is intended for quick local inspection of a fog database without a map UI.
All geometry work is delegated to `fogmap.storage.store.GeometryStore`.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from fogmap.config.settings import get_settings
from fogmap.core.errors import FogMapError
from fogmap.core.logging import LEVEL_NAMES, configure_logging
from fogmap.core.time import ms_to_datetime
from fogmap.geometry.shapes import to_feature
from fogmap.render.overlay import build_fog_overlay
from fogmap.sharing.codec import decode_export, encode_export, export_history, import_shared
from fogmap.storage.store import GeometryStore
from fogmap.tracking.tracker import LocationRecorder


def _open_store() -> GeometryStore:
    store = GeometryStore.from_settings(get_settings())
    store.initialize()
    return store


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _cmd_add(args: argparse.Namespace, store: GeometryStore) -> int:
    settings = get_settings()
    recorder = LocationRecorder.for_settings(store, settings)
    threshold = (
        settings.significance.manual_min_distance_miles
        if args.manual
        else settings.significance.live_min_distance_miles
    )
    accepted = recorder.record(args.lat, args.lon, min_distance_miles=threshold)
    stats = store.get_revealed_stats("personal")
    status = "added" if accepted else "skipped (not significant)"
    print(f"{status}: ({args.lat:.6f}, {args.lon:.6f}) points={stats.point_count}")
    return 0


def _stats_payload(store: GeometryStore, slot: str) -> dict[str, Any]:
    stats = store.get_revealed_stats(slot)
    out = stats.model_dump()
    out["last_updated_at"] = ms_to_datetime(stats.last_updated).isoformat() if stats.last_updated else None
    return out


def _cmd_stats(_: argparse.Namespace, store: GeometryStore) -> int:
    _print_json({"personal": _stats_payload(store, "personal"), "shared": _stats_payload(store, "shared")})
    return 0


def _cmd_geometry(args: argparse.Namespace, store: GeometryStore) -> int:
    readers = {
        "personal": store.get_revealed_geometry,
        "shared": store.get_shared_geometry,
        "shared-only": store.get_shared_only_geometry,
        "all": store.get_all_revealed_geometry,
    }
    value = readers[args.slot]()
    _print_json(to_feature(value) if value is not None else None)
    return 0


def _cmd_export(args: argparse.Namespace, store: GeometryStore) -> int:
    text = encode_export(export_history(store))
    if args.out:
        Path(args.out).write_text(text, encoding="utf-8")
        print(f"wrote {args.out}")
    else:
        print(text)
    return 0


def _cmd_import(args: argparse.Namespace, store: GeometryStore) -> int:
    data = decode_export(Path(args.file).read_bytes())
    imported = import_shared(store, data.locations)
    print(f"imported {imported} of {len(data.locations)} locations")
    return 0


def _cmd_fog_overlay(_: argparse.Namespace, store: GeometryStore) -> int:
    _print_json(build_fog_overlay(store.get_all_revealed_geometry()))
    return 0


def _cmd_clear(args: argparse.Namespace, store: GeometryStore) -> int:
    if not args.yes:
        print("refusing to clear without --yes", file=sys.stderr)
        return 2
    store.clear_all()
    print("cleared")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the FogMap CLI."""
    parser = argparse.ArgumentParser(prog="fogmap")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LEVEL_NAMES,
        default=None,
        help="Override FOGMAP_LOG_LEVEL for this run.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add", help="Record a visited location through the significance filter.")
    add.add_argument("lat", type=float)
    add.add_argument("lon", type=float)
    add.add_argument("--manual", action="store_true", help="Use the smaller manual-offset threshold.")
    add.set_defaults(func=_cmd_add)

    st = sub.add_parser("stats", help="Point counts and last-updated per slot.")
    st.set_defaults(func=_cmd_stats)

    geo = sub.add_parser("geometry", help="Print a revealed geometry as a GeoJSON Feature.")
    geo.add_argument("--slot", choices=["personal", "shared", "shared-only", "all"], default="personal")
    geo.set_defaults(func=_cmd_geometry)

    exp = sub.add_parser("export", help="Export personal history as JSON.")
    exp.add_argument("--out", type=str, default=None, help="Write to FILE instead of stdout.")
    exp.set_defaults(func=_cmd_export)

    imp = sub.add_parser("import", help="Import a peer's export file as shared data.")
    imp.add_argument("file", type=str)
    imp.set_defaults(func=_cmd_import)

    fog = sub.add_parser("fog-overlay", help="Print the fog polygon with revealed areas cut out.")
    fog.set_defaults(func=_cmd_fog_overlay)

    clr = sub.add_parser("clear", help="Delete all geometry and history.")
    clr.add_argument("--yes", action="store_true", help="Confirm the irreversible delete.")
    clr.set_defaults(func=_cmd_clear)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint callable used by `python -m fogmap.cli`."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        configure_logging(args.log_level)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    func: Any = getattr(args, "func")
    try:
        store = _open_store()
    except (FogMapError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    try:
        return int(func(args, store))
    except (FogMapError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
