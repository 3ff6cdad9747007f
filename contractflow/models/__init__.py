"""
Contract Management Platform
SQLAlchemy extension instance shared by every model module.

Usage:
    from contractflow.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
