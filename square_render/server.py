from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import requests
import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from common.logging_setup import get_logger, setup_logging
from common.utils import iso_now_ms, parse_flag
from square_render.compositor import RenderRequest, SquareCompositor
from square_render.config import DEFAULT_CONFIG, build_store, load_config, merge_config
from square_render.errors import SquareRenderError
from square_render.exploration import ExplorationStore
from square_render.fetch_cache import LayerFetchCache
from square_render.layers import LayerResolver
from square_render.overlays import StaticOverlayCache
from square_render.snapshot import NeighborhoodRenderer


log = get_logger(__name__)


def create_app(
    config: Optional[Dict[str, Any]] = None,
    *,
    fetch_cache: Optional[LayerFetchCache] = None,
    store: Optional[ExplorationStore] = None,
    session: Optional[requests.Session] = None,
) -> FastAPI:
    """
    Build the API with its long-lived services (kept on app.state):
        resolver, fetch_cache, overlays, store, compositor, snapshots
    Tests inject an isolated fetch cache / store / session.
    """
    P = merge_config(DEFAULT_CONFIG, config)
    rcfg, fcfg, hcfg, scfg = P["render"], P["fetch"], P["http"], P["snapshot"]

    resolver = LayerResolver(P["layers"]["base_url"], P["layers"]["images_path"])
    if fetch_cache is None:
        fetch_cache = LayerFetchCache(
            ttl_s=float(fcfg["ttl_s"]),
            max_entries=int(fcfg["max_entries"]),
            timeout_s=float(fcfg["timeout_s"]),
            max_workers=int(fcfg["max_workers"]),
            session=session,
        )
    if store is None:
        store = build_store(P["exploration"])
    overlays = StaticOverlayCache(int(rcfg["width"]), int(rcfg["height"]))
    compositor = SquareCompositor(
        resolver,
        fetch_cache,
        overlays=overlays,
        store=store,
        width=int(rcfg["width"]),
        height=int(rcfg["height"]),
        compression=int(rcfg["compression"]),
    )
    snapshots = NeighborhoodRenderer(resolver, fetch_cache, int(scfg["width"]), int(scfg["height"]))
    cache_control = f"public, max-age={int(hcfg['cache_max_age_s'])}"

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        fetch_cache.close()

    app = FastAPI(title="Map Square Render API", version="1.0.0", lifespan=lifespan)
    app.state.config = P
    app.state.resolver = resolver
    app.state.fetch_cache = fetch_cache
    app.state.overlays = overlays
    app.state.store = store
    app.state.compositor = compositor
    app.state.snapshots = snapshots

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(hcfg.get("cors_origins", ["*"])),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SquareRenderError)
    async def _render_error(_: Request, exc: SquareRenderError) -> JSONResponse:
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "time": iso_now_ms(),
            "fetch_cache": fetch_cache.stats(),
            "overlays": overlays.stats(),
            "exploration": {"backend": store.name if store is not None else "none"},
        }

    @app.get("/stats")
    def stats():
        return {"fetch_cache": fetch_cache.stats(), "overlays": overlays.stats()}

    @app.get("/square-image")
    @app.get("/api/explore/square-image")
    def square_image(
        square: Optional[str] = Query(None),
        quadrant: Optional[str] = Query(None),
        noMask: Optional[str] = Query(None),
        highlight: Optional[str] = Query(None),
    ):
        """
        Return the composited square as PNG bytes.

        Query:
          square     required, A..J + 1..12 (e.g. H8)
          quadrant   optional Q1..Q4, the viewer's quadrant (never fogged)
          noMask     1/true to skip fog entirely
          highlight  1/true to outline the viewer's quadrant
        """
        req = RenderRequest(
            square=square,
            quadrant=quadrant,
            no_mask=parse_flag(noMask),
            highlight=parse_flag(highlight),
        )
        try:
            result = compositor.render(req)
        except SquareRenderError:
            raise
        except Exception:
            log.exception("Unexpected square render failure", extra={"extra": {"square": square}})
            return JSONResponse({"error": "render_failed", "detail": "Failed to generate square image"}, status_code=500)

        headers = {
            "Cache-Control": cache_control,
            "X-Square": str(result.square),
            "X-Fogged-Quadrants": ",".join(q.value for q in result.fogged),
        }
        return Response(content=result.png, media_type="image/png", headers=headers)

    @app.get("/snapshot")
    def snapshot(square: Optional[str] = Query(None), marker: Optional[str] = Query(None)):
        """3x3 neighbourhood mosaic of base tiles centred on `square` (PNG)."""
        try:
            png = snapshots.render(square, marker=parse_flag(marker))
        except SquareRenderError:
            raise
        except Exception:
            log.exception("Unexpected snapshot failure", extra={"extra": {"square": square}})
            return JSONResponse({"error": "render_failed", "detail": "Failed to generate snapshot"}, status_code=500)
        return Response(content=png, media_type="image/png", headers={"Cache-Control": cache_control})

    return app


P = load_config()
setup_logging(P.get("logging", {}).get("level"), force=True)
app = create_app(P)


# -------- local dev entrypoint --------
if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
