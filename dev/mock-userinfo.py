#!/usr/bin/env python3
"""Mock identity-provider userinfo endpoint for local development.

Any `Bearer <token>` is accepted except `Bearer invalid` (401) and `Bearer denied` (403).
Set MOCK_SCHEMA=groups to answer in the grouped shape.
"""

import os
import sys

from flask import Flask, jsonify, request

app = Flask(__name__)

ALLOWED_APPS = [x for x in os.getenv("MOCK_ALLOWED_APPS", "checkout").split(",") if x]
ALLOWED_IMAGES = [x for x in os.getenv("MOCK_ALLOWED_IMAGES", "nginx").split(",") if x]


@app.route("/userinfo", methods=["GET"])
def userinfo():
    """Return a capability document for the presented token."""
    auth = request.headers.get("Authorization", "")
    if not auth.lower().startswith("bearer "):
        return jsonify({"error": "missing bearer token"}), 401
    token = auth.split(" ", 1)[1].strip()
    if token == "invalid":
        return jsonify({"error": "invalid token"}), 401
    if token == "denied":
        return jsonify({"error": "access denied"}), 403
    if os.getenv("MOCK_SCHEMA", "flat") == "groups":
        return jsonify({"sub": "dev-user", "groups": ALLOWED_APPS, "allowed_images": ALLOWED_IMAGES})
    return jsonify({"allowed_apps": ALLOWED_APPS, "allowed_images": ALLOWED_IMAGES})


@app.route("/healthz")
def health():
    """Health check endpoint."""
    return jsonify({"status": "ok"})


if __name__ == "__main__":
    print("Mock userinfo starting on http://0.0.0.0:19480/userinfo", file=sys.stderr)
    app.run(host="0.0.0.0", port=19480, debug=False)
