"""
Annual Report Portal
SQLAlchemy database handle shared by all models.

Usage:
    from portal.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
