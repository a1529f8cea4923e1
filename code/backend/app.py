"""
Flask application for the Domain Expert gateway.
"""

import logging
from typing import Optional

from flask import Flask, jsonify

from backend.api.domain_expert import GATEWAY_EXTENSION, bp_domain_expert
from backend.batch.utilities.domain_expert import QueryGateway
from backend.batch.utilities.helpers.env_helper import EnvHelper

logger = logging.getLogger(__name__)


def create_app(gateway: Optional[QueryGateway] = None) -> Flask:
    """
    Create the Flask app.

    Args:
        gateway: Optional pre-built gateway; built from the environment on
            first use otherwise
    """
    env_helper = EnvHelper()
    logging.basicConfig(
        level=env_helper.LOGLEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = Flask(__name__)
    if gateway is not None:
        app.extensions[GATEWAY_EXTENSION] = gateway

    app.register_blueprint(bp_domain_expert)

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok"})

    logger.info("Domain Expert app created")
    return app


if __name__ == "__main__":
    create_app().run()
