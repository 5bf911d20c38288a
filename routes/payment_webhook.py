from flask import Blueprint, request, jsonify

from services.webhook import handle_bank_webhook

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhooks")


def _webhook_payload() -> dict:
    data = request.get_json(silent=True)
    if isinstance(data, dict) and data:
        return data
    if request.form:
        return request.form.to_dict()
    return request.args.to_dict()


# SePay retries on any non-2xx, so every outcome is a 200 with the result in the body
@webhook_bp.route("/sepay", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
def sepay_webhook():
    return jsonify(handle_bank_webhook(_webhook_payload())), 200
