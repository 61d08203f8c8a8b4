"""
Playwright Test Manager
SQLAlchemy instance shared by every model module.

Usage:
    from testmanager.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
