# Overview: Flask extension instances shared by models, services and the CLI.

from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

# Bound to the app in create_app(); every ledger operation uses db.session
db = SQLAlchemy()
migrate = Migrate()
