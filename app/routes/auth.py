from flask import Blueprint, request, jsonify, current_app
from app.version import API_PREFIX
from app.utils import error, create_access_token, create_refresh_token, decode_token, TokenError

auth_bp = Blueprint("auth", __name__, url_prefix=API_PREFIX)


# --- Staff token refresh ---

@auth_bp.route("/auth/refresh", methods=["POST"])
def refresh_tokens():
    j = request.get_json() or {}
    token = j.get("refresh_token", "")
    try:
        payload = decode_token(token, expected_type="refresh")
    except TokenError as e:
        return error(str(e), status=401)

    subject = payload.get("sub")
    role = payload.get("role") or ""
    return jsonify({
        "access_token": create_access_token(subject, role),
        "refresh_token": create_refresh_token(subject, role),
        "expires_in": current_app.config["ACCESS_TOKEN_LIFETIME_MIN"] * 60,
    }), 200
