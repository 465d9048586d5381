from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from werkzeug.security import check_password_hash

from app.core.errors import Deactivated, InvalidPayload, Unauthenticated
from app.core.models import User
from app.forms.identity import change_password

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


@auth_bp.post("/login")
def login_post():
    payload = request.get_json(silent=True) or request.form
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    if not email or not password:
        raise InvalidPayload("Email and password are required")
    user = User.query.filter_by(email=email).first()
    if not user or not check_password_hash(user.password_hash, password):
        raise Unauthenticated("Invalid credentials")
    if not user.is_active:
        raise Deactivated()
    login_user(user)
    logger.info("User user_id=%s logged in", user.id)
    return jsonify({"user": user.to_dict()})


@auth_bp.post("/logout")
@login_required
def logout():
    logout_user()
    return jsonify({"message": "Logged out"})


@auth_bp.get("/me")
@login_required
def me():
    return jsonify({"user": current_user.to_dict()})


@auth_bp.post("/change-password")
@login_required
def change_password_post():
    payload = request.get_json(silent=True) or {}
    if payload.get("new_password") != payload.get("new_password_confirmation", payload.get("new_password")):
        raise InvalidPayload("The password confirmation does not match", field="new_password_confirmation")
    change_password(current_user._get_current_object(), payload.get("current_password"), payload.get("new_password"))
    return jsonify({"message": "Password changed successfully"})
