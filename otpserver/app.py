"""
FLASK APP ENTRY POINT - AUTHENTICATOR API SERVER
================================================

Builds the Flask app, enables CORS for a separate frontend, and registers
the account API blueprint.

Configuration (environment):
- ONETIME_DB          sqlite vault file
- ONETIME_SECRET_KEY  Flask secret key
- ONETIME_HOST / ONETIME_PORT / ONETIME_DEBUG  development server
"""
import logging
import os

from flask import Flask, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from otpcore.exceptions import OTPError
from otpvault import AccountNotFound, AccountStore, DuplicateAccount, SqliteKeyValueStore, VaultUnreadable

from .routes import accounts_bp

STORE_EXTENSION = "account_store"


def create_app(store: AccountStore = None) -> Flask:
    """
    Create the API app.

    ``store`` defaults to an AccountStore over the sqlite vault named by
    ONETIME_DB; tests pass one over an in-memory key-value store.
    """
    app = Flask(__name__)
    app.secret_key = os.environ.get("ONETIME_SECRET_KEY", "onetime_dev_secret_key")
    CORS(app)

    if store is None:
        store = AccountStore(SqliteKeyValueStore(os.environ.get("ONETIME_DB")))
    app.extensions[STORE_EXTENSION] = store

    app.register_blueprint(accounts_bp)

    @app.errorhandler(OTPError)
    def handle_otp_error(error):
        return jsonify(error.to_dict()), 400

    @app.errorhandler(AccountNotFound)
    def handle_not_found(error):
        return jsonify({"error": "not_found", "message": str(error)}), 404

    @app.errorhandler(DuplicateAccount)
    def handle_duplicate(error):
        return jsonify({"error": "duplicate", "message": str(error)}), 409

    @app.errorhandler(VaultUnreadable)
    def handle_unreadable_vault(error):
        app.logger.error("Refused write to unreadable vault: %s", error.reason)
        return jsonify({"error": "vault_unreadable", "message": str(error)}), 500

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({"error": error.name.lower().replace(" ", "_"), "message": error.description}), error.code

    @app.route("/", methods=["GET"])
    def index():
        return jsonify({
            "service": "onetime-authenticator",
            "endpoints": sorted(
                str(rule) for rule in app.url_map.iter_rules() if rule.endpoint != "static"
            ),
        })

    return app


# Only when executed directly (python -m otpserver.app)
if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_app().run(
        debug=os.environ.get("ONETIME_DEBUG", "0") == "1",
        host=os.environ.get("ONETIME_HOST", "127.0.0.1"),
        port=int(os.environ.get("ONETIME_PORT", "5000")),
    )
