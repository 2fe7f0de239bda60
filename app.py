from __future__ import annotations

import os

from flask import Flask, jsonify

import settings
from db_models import init_db
from event_store import count_events, load_snapshot
from pipeline_api import get_db, maybe_start_scheduler, pipeline_bp
from stream_proxy import proxy_bp


def create_app(config: dict | None = None) -> Flask:
    app = Flask(__name__)
    app.config.update(
        HEADER_PROFILE=settings.DEFAULT_HEADER_PROFILE,
        PROXY_TIMEOUT_SECONDS=settings.PROXY_TIMEOUT_SECONDS,
        ENABLE_SCHEDULER=settings.ENABLE_SCHEDULER,
    )
    if config:
        app.config.update(config)

    app.register_blueprint(pipeline_bp)
    app.register_blueprint(proxy_bp)

    @app.route("/healthz")
    def healthz():
        db = get_db()
        return jsonify({
            "ok": True,
            "events": count_events(db),
            "snapshot": len(load_snapshot(db)),
        })

    if not app.config.get("TESTING"):
        init_db()
        if app.config.get("ENABLE_SCHEDULER"):
            maybe_start_scheduler()
    return app


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)), debug=False)
