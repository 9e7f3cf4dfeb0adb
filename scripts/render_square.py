#!/usr/bin/env python3
"""
Render one map square offline (same pipeline as GET /square-image).

Examples:
  python scripts/render_square.py --square H8 --out h8.png
  python scripts/render_square.py --square H8 --quadrant Q3 --highlight --out h8_q3.png
  python scripts/render_square.py --square A1 --no-mask --exploration data/exploration.json
  python scripts/render_square.py --square H5 --snapshot --marker --out h5_area.png
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

from common.logging_setup import setup_logging
from square_render.compositor import RenderRequest, SquareCompositor
from square_render.config import build_store, load_config
from square_render.errors import SquareRenderError
from square_render.exploration import JsonExplorationStore
from square_render.fetch_cache import LayerFetchCache
from square_render.layers import LayerResolver
from square_render.snapshot import NeighborhoodRenderer


def main() -> int:
    ap = argparse.ArgumentParser(description="Render a composited map square to PNG")
    ap.add_argument("--config", default=None, help="YAML config (defaults to config/params.yaml)")
    ap.add_argument("--square", required=True, help="Square id, e.g. H8")
    ap.add_argument("--quadrant", default=None, help="Viewer quadrant Q1..Q4")
    ap.add_argument("--no-mask", action="store_true", help="Skip fog of war")
    ap.add_argument("--highlight", action="store_true", help="Outline the viewer quadrant")
    ap.add_argument("--exploration", default="", help="JSON exploration file (overrides config backend)")
    ap.add_argument("--snapshot", action="store_true", help="Render the 3x3 neighbourhood instead")
    ap.add_argument("--marker", action="store_true", help="Centre marker for --snapshot")
    ap.add_argument("--out", default="square.png", help="Output PNG path")
    args = ap.parse_args()

    P = load_config(args.config)
    setup_logging(P["logging"].get("level"))

    resolver = LayerResolver(P["layers"]["base_url"], P["layers"]["images_path"])
    fcfg = P["fetch"]
    cache = LayerFetchCache(
        ttl_s=float(fcfg["ttl_s"]),
        max_entries=int(fcfg["max_entries"]),
        timeout_s=float(fcfg["timeout_s"]),
        max_workers=int(fcfg["max_workers"]),
    )
    store = JsonExplorationStore(args.exploration) if args.exploration else build_store(P["exploration"])

    try:
        if args.snapshot:
            renderer = NeighborhoodRenderer(resolver, cache, int(P["snapshot"]["width"]), int(P["snapshot"]["height"]))
            png = renderer.render(args.square, marker=args.marker)
        else:
            compositor = SquareCompositor(
                resolver,
                cache,
                store=store,
                width=int(P["render"]["width"]),
                height=int(P["render"]["height"]),
                compression=int(P["render"]["compression"]),
            )
            result = compositor.render(
                RenderRequest(square=args.square, quadrant=args.quadrant, no_mask=args.no_mask, highlight=args.highlight)
            )
            png = result.png
            print(f"[ok] fogged={','.join(q.value for q in result.fogged) or '-'} layers={len(result.layers)}")
    except SquareRenderError as e:
        print(f"[error] {e.code}: {e}", file=sys.stderr)
        return 1
    finally:
        cache.close()

    out = Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(png)
    print(f"[ok] wrote {out} ({len(png)} bytes)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
