"""
AUTHENTICATOR API ROUTES - FLASK BLUEPRINT
==========================================

Every endpoint lives under /api. Accounts are addressed by id.

EXAMPLES:
curl -X POST http://localhost:5000/api/parse -H "Content-Type: application/json" \
     -d '{"text": "otpauth://totp/Example:alice@example.com?secret=JBSWY3DPEHPK3PXP&issuer=Example"}'
curl -X POST http://localhost:5000/api/accounts -H "Content-Type: application/json" \
     -d '{"text": "otpauth://totp/Example:alice@example.com?secret=JBSWY3DPEHPK3PXP&issuer=Example"}'
curl http://localhost:5000/api/accounts/<id>/code
"""
import base64
import io
import logging

import pyotp
import qrcode
from flask import Blueprint, Response, abort, current_app, jsonify, request

from otpcore import ParseError, code_for, encode_migration_uri, new_credential, parse_all

accounts_bp = Blueprint("accounts", __name__, url_prefix="/api")

logger = logging.getLogger(__name__)

# JSON body key -> Credential field
_EDITABLE_FIELDS = {
    "name": "name",
    "issuer": "issuer",
    "secret": "secret",
    "algorithm": "algorithm",
    "digits": "digits",
    "period": "period",
    "type": "otp_type",
    "counter": "counter",
}


def _store():
    return current_app.extensions["account_store"]


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        abort(400, description="JSON object body required")
    return data


@accounts_bp.route("/parse", methods=["POST"])
def parse_text():
    """
    PARSE SCANNED TEXT WITHOUT STORING IT

    Input:  {"text": "<otpauth URI | migration URI | JSON | query string | secret>"}
    Output: {"items": [account, ...]}  or  400 {"error": code, "message": ...}
    """
    data = _json_body()
    if not data.get("text"):
        abort(400, description="'text' is required")
    result = parse_all(data["text"])
    if isinstance(result, ParseError):
        return jsonify(result.to_dict()), 400
    return jsonify({"items": [account.to_dict() for account in result]})


@accounts_bp.route("/accounts", methods=["GET"])
def list_accounts():
    return jsonify({"items": [account.to_dict() for account in _store().get_accounts()]})


@accounts_bp.route("/accounts", methods=["POST"])
def create_accounts():
    """
    ADD ACCOUNT(S)

    Either scanned text:   {"text": "..."}
    or manual entry:       {"name": "alice", "issuer": "Example", "secret": "JBSW...", "digits": 6}
    A manual entry without a secret gets a fresh random one.
    """
    data = _json_body()
    if data.get("text"):
        result = parse_all(data["text"])
        if isinstance(result, ParseError):
            return jsonify(result.to_dict()), 400
        accounts = result
    else:
        accounts = [
            new_credential(
                name=data.get("name"),
                secret=data.get("secret") or pyotp.random_base32(),
                issuer=data.get("issuer"),
                algorithm=data.get("algorithm"),
                digits=data.get("digits"),
                period=data.get("period"),
                otp_type=data.get("type"),
                counter=data.get("counter"),
            )
        ]
    _store().add_accounts(accounts)
    return jsonify({"items": [account.to_dict() for account in accounts]}), 201


@accounts_bp.route("/accounts/<string:account_id>", methods=["GET"])
def get_account(account_id):
    return jsonify(_store().get_account(account_id).to_dict())


@accounts_bp.route("/accounts/<string:account_id>", methods=["PUT"])
def update_account(account_id):
    """Replace the editable fields of an account; id and createdAt never change."""
    data = _json_body()
    store = _store()
    changes = {field: data[key] for key, field in _EDITABLE_FIELDS.items() if key in data}
    account = store.get_account(account_id).replace(**changes)
    return jsonify(store.update_account(account).to_dict())


@accounts_bp.route("/accounts/<string:account_id>", methods=["DELETE"])
def delete_account(account_id):
    _store().delete_account(account_id)
    return "", 204


@accounts_bp.route("/accounts/<string:account_id>/code", methods=["GET"])
def get_code(account_id):
    """
    CURRENT CODE

    Output: {"code": "123456", "remaining": 17, "period": 30, "type": "totp", "counter": 0}
    Clients poll this once per second to drive a countdown.
    """
    account = _store().get_account(account_id)
    result = code_for(account)
    if not result.ok:
        return jsonify(result.error.to_dict()), 400
    return jsonify({
        "code": result.code,
        "remaining": result.remaining,
        "period": account.period,
        "type": account.otp_type,
        "counter": account.counter,
    })


@accounts_bp.route("/accounts/<string:account_id>/next", methods=["POST"])
def next_hotp_code(account_id):
    try:
        account = _store().advance_counter(account_id)
    except ValueError as e:
        abort(400, description=str(e))
    result = code_for(account)
    return jsonify({"code": result.code, "counter": account.counter})


@accounts_bp.route("/accounts/<string:account_id>/uri", methods=["GET"])
def get_uri(account_id):
    return jsonify({"uri": _store().get_account(account_id).to_uri()})


@accounts_bp.route("/accounts/<string:account_id>/qr", methods=["GET"])
def get_qr_code(account_id):
    """QR code of the account's otpauth URI as a PNG data URI."""
    uri = _store().get_account(account_id).to_uri()

    qr = qrcode.QRCode(version=1, box_size=10, border=5)
    qr.add_data(uri)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    img_str = base64.b64encode(buffer.getvalue()).decode()
    return jsonify({"qr_code": f"data:image/png;base64,{img_str}", "id": account_id})


@accounts_bp.route("/export", methods=["GET"])
def export_accounts():
    return Response(_store().export_accounts(), mimetype="application/json")


@accounts_bp.route("/export/migration", methods=["GET"])
def export_migration():
    return jsonify({"uri": encode_migration_uri(_store().get_accounts())})


@accounts_bp.route("/import", methods=["POST"])
def import_accounts():
    """
    RESTORE A BACKUP

    Body: the JSON written by GET /api/export. ?merge=1 keeps existing accounts.
    """
    merge = request.args.get("merge") in ("1", "true")
    count = _store().import_accounts(request.get_data(as_text=True), replace=not merge)
    if not count:
        abort(400, description="No valid accounts found in backup")
    return jsonify({"imported": count})


@accounts_bp.route("/settings/encryption", methods=["GET"])
def get_encryption():
    return jsonify({"enabled": _store().is_encrypted_storage_enabled()})


@accounts_bp.route("/settings/encryption", methods=["PUT"])
def set_encryption():
    data = _json_body()
    if not isinstance(data.get("enabled"), bool):
        abort(400, description="'enabled' must be true or false")
    _store().set_encrypted_storage(data["enabled"])
    logger.info("Encrypted storage set to %s", data["enabled"])
    return jsonify({"enabled": data["enabled"]})
