"""
Map Square Renderer

- Composites one map square (base terrain + overlays + fog of war + grid,
  quadrant badges and an optional highlight) into a single PNG
- Fetches layer bitmaps from the remote object store through a shared TTL cache
- Serves GET /square-image (PNG bytes), /snapshot, /stats and /health
"""
