"""
Project Tracker
Database models package.

All model modules import ``db`` from here so Flask-Migrate sees a single
metadata object.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
