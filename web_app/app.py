from __future__ import annotations

import os
import sys
import time

from flask import Flask, jsonify, request

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from trackers.errors import ConfigError
from trackers.hub import TrackerHub


def _summary(engine) -> dict:
    view = engine.view()
    return {
        "instance_id": view.instance_id,
        "selector": view.selector,
        "status": view.status,
        "last_error": view.last_error,
        "scan_count": view.scan_count,
        "last_scan_ts": view.last_scan_ts,
        "seconds_to_next_scan": view.seconds_to_next_scan(time.time()),
        "counts": view.counts(),
    }


def create_app(hub: TrackerHub) -> Flask:
    app = Flask(__name__)
    app.config["TRACKER_HUB"] = hub

    @app.route("/api/trackers")
    def list_trackers():
        items = []
        for instance_id, refs in sorted(hub.instances().items()):
            engine = hub.get(instance_id)
            if engine is None:
                continue
            row = _summary(engine)
            row["clients"] = refs
            items.append(row)
        return jsonify({"trackers": items})

    @app.route("/api/trackers/<instance_id>")
    def tracker_view(instance_id: str):
        engine = hub.get(instance_id)
        if engine is None:
            return jsonify({"status": "unknown tracker", "instance_id": instance_id}), 404
        payload = engine.view().to_dict(now=time.time())
        payload["config"] = engine.config.to_dict()
        return jsonify(payload)

    @app.route("/api/trackers/<instance_id>/scan", methods=["POST"])
    def tracker_scan(instance_id: str):
        engine = hub.get(instance_id)
        if engine is None:
            return jsonify({"status": "unknown tracker", "instance_id": instance_id}), 404
        fut = engine.trigger_now()
        if fut is None:
            return jsonify({"status": "scan in flight", "instance_id": instance_id}), 409
        return jsonify({"status": "scan started", "instance_id": instance_id}), 202

    @app.route("/api/trackers/<instance_id>/config", methods=["POST"])
    def tracker_config(instance_id: str):
        engine = hub.get(instance_id)
        if engine is None:
            return jsonify({"status": "unknown tracker", "instance_id": instance_id}), 404
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return jsonify({"status": "json must be object"}), 400
        merged = engine.config.to_dict()
        merged.update(body)
        try:
            cfg = type(engine.config).from_dict(merged)
            engine.update_config(cfg)
        except ConfigError as e:
            return jsonify({"status": "invalid config", "error": str(e)}), 400
        return jsonify({"status": "ok", "config": cfg.to_dict()})

    return app
