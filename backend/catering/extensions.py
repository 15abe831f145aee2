# Overview: Flask extension instances shared by models, services and the CLI.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()

# SQLite cannot ALTER constraints in place; autogenerate batch operations
migrate = Migrate(render_as_batch=True)
