from flask import Blueprint

forms_bp = Blueprint("forms", __name__, url_prefix="/api")

from app.forms import routes  # noqa: E402,F401
