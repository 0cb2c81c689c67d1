
def register_blueprints(app):
    from feedcurator.routes.health import health_bp
    from feedcurator.routes.readers import readers_bp
    from feedcurator.routes.admin import admin_bp
    from feedcurator.routes.cost import cost_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(readers_bp, url_prefix='/api/readers')
    app.register_blueprint(admin_bp, url_prefix='/api/admin')
    app.register_blueprint(cost_bp, url_prefix='/api/cost')
