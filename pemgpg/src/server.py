import os
import time

from flask import Flask, Response, jsonify, request

from .errors import PemGpgError
from .gpg_armor import convert_private_key
from .key_decoder import KeyAlgorithm
from .observability import (
    Timer,
    inc_chain_decomposed,
    inc_failure,
    inc_inflight,
    inc_key_converted,
    observe_request_size,
    record_request,
    render_prometheus,
)
from .pem_chain import decompose_chain

GPG_ARMOR_FIELDS = ("private_key", "algorithm", "timestamp", "name", "email")


def create_app():
    app = Flask(__name__)

    # --- Config ---
    app.config["MAX_CONTENT_LENGTH"] = int(
        os.environ.get("MAX_REQUEST_BYTES", str(1024 * 1024))
    )
    app.config["METRICS_TOKEN"] = os.environ.get("METRICS_TOKEN", "")

    # --- Helpers ---
    def _error(msg: str, code: int = 400, stage: str | None = None):
        body = {"error": msg}
        if stage is not None:
            body["stage"] = stage
        return jsonify(body), code

    def _required_strings(payload: dict, fields) -> str | None:
        """Return an error message naming missing or empty fields, if any."""
        missing = [
            f
            for f in fields
            if not isinstance(payload.get(f), str) or not payload[f].strip()
        ]
        if missing:
            return f"{', '.join(missing)} must be non-empty strings"
        return None

    @app.errorhandler(413)
    def _too_large(_exc):
        return _error(
            f"request body exceeds {app.config['MAX_CONTENT_LENGTH']} bytes", 413
        )

    # --- Request instrumentation hooks ---
    @app.before_request
    def _pemgpg_before():
        try:
            request._pemgpg_start = time.time()  # type: ignore[attr-defined]
            route = request.url_rule.rule if request.url_rule else request.path
            inc_inflight(route)
            observe_request_size(request.method, route, request.content_length)
        except Exception as exc:  # pragma: no cover - instrumentation must not fail requests
            app.logger.error("before_request instrumentation failed: %s", exc)

    @app.after_request
    def _pemgpg_after(resp):
        try:
            start = getattr(request, "_pemgpg_start", None)
            if start is not None:
                dur = time.time() - start
                route = request.url_rule.rule if request.url_rule else request.path
                record_request(request.method, route, resp.status_code, dur)
        except Exception as exc:  # pragma: no cover
            app.logger.error("after_request instrumentation failed: %s", exc)
        return resp

    # --- Routes ---

    @app.get("/healthz")
    def healthz():
        return jsonify({"message": "The server is up and running."}), 200

    # POST /api/pem-chain {pem_chain}
    @app.post("/api/pem-chain")
    def pem_chain():
        payload = request.get_json(silent=True) or {}
        if not isinstance(payload, dict):
            return _error("JSON object body is required")
        problem = _required_strings(payload, ("pem_chain",))
        if problem:
            return _error(problem)

        try:
            result = decompose_chain(payload["pem_chain"])
        except PemGpgError as e:
            inc_failure("pem_chain", e.stage)
            app.logger.warning("pem chain rejected: %s", e)
            return _error(str(e), 422, stage=e.stage)

        inc_chain_decomposed(len(result.ordered))
        return jsonify(result.as_dict()), 200

    # POST /api/gpg-armor {private_key, algorithm, timestamp, name, email}
    @app.post("/api/gpg-armor")
    def gpg_armor():
        payload = request.get_json(silent=True) or {}
        if not isinstance(payload, dict):
            return _error("JSON object body is required")
        problem = _required_strings(payload, GPG_ARMOR_FIELDS)
        if problem:
            return _error(problem)

        algorithm = payload["algorithm"].strip().lower()
        if algorithm not in {a.value for a in KeyAlgorithm}:
            return _error(
                "Permitted value for algorithm can only be one of the following: rsa, ecdsa."
            )

        try:
            with Timer() as timer:
                result = convert_private_key(
                    payload["private_key"],
                    algorithm,
                    payload["name"],
                    payload["email"],
                    payload["timestamp"],
                )
        except PemGpgError as e:
            inc_failure("gpg_armor", e.stage)
            app.logger.warning("gpg armor conversion failed at %s: %s", e.stage, e)
            return _error(str(e), 422, stage=e.stage)
        except Exception:
            inc_failure("gpg_armor", "internal")
            app.logger.exception("Unexpected error converting %s key", algorithm)
            return _error("internal error", 500)

        inc_key_converted(algorithm, timer.elapsed)
        return jsonify(result.as_dict()), 200

    def _is_authorized_metrics_request() -> bool:
        token_required = app.config["METRICS_TOKEN"]
        provided = request.headers.get("X-Metrics-Token", "")
        return bool(token_required) and provided == token_required

    @app.get("/metrics")
    def metrics():
        if not _is_authorized_metrics_request():
            # 404 rather than 403 to casual scans
            return jsonify({"error": "not found"}), 404
        data = render_prometheus()
        return Response(data, mimetype="text/plain; version=0.0.4")

    return app


# WSGI entrypoint
app = create_app()

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    host = os.environ.get("HOST", "127.0.0.1")
    app.run(host=host, port=port)
