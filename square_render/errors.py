from __future__ import annotations


class SquareRenderError(Exception):
    """Base class for failures that abort a render; carries the HTTP mapping."""
    status_code = 500
    code = "render_failed"

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": str(self)}


class InvalidSquareError(SquareRenderError, ValueError):
    status_code = 400
    code = "invalid_square"


class MandatoryLayerUnavailable(SquareRenderError):
    status_code = 502
    code = "base_layer_unavailable"


class EncodingError(SquareRenderError):
    status_code = 500
    code = "encoding_failed"
