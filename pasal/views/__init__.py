from flask import current_app, request


def services():
    return current_app.extensions["pasal"]


def get_payload():
    if request.form:
        return request.form.to_dict()
    return request.get_json(silent=True) or {}


def register_blueprints(app):
    from .accounts import accounts_bp
    from .catalog import catalog_bp
    from .orders import orders_bp
    from .payments import payments_bp

    app.register_blueprint(catalog_bp)
    app.register_blueprint(accounts_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)
