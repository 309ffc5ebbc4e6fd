# awardvote/__init__.py

import logging

from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix

# Extensions are created unbound and attached in create_app()
db = SQLAlchemy()  # Database ORM
migrate = Migrate()  # `flask db` commands
limiter = Limiter(key_func=get_remote_address)  # Edge throttling per client address


def create_app(config_object=None):
    app = Flask(__name__)
    app.config.from_object(config_object or 'awardvote.config.Config')

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Trust one hop of proxy headers so remote_addr is the client address
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # Ensure model modules are imported so SQLAlchemy metadata is populated
    from awardvote.database import models  # noqa: F401
    from awardvote.services import build_services
    from awardvote.routes import bp
    from awardvote.cli import register_commands

    with app.app_context():
        db.create_all()

    app.extensions['awardvote'] = build_services(app)
    app.register_blueprint(bp)
    register_commands(app)
    return app
