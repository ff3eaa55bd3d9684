# Overview: Flask extension instances shared by the stockledger app (ORM session, Alembic migrations).

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()
