# clientguard/extensions.py
"""Flask extensions initialization"""
from flask_sqlalchemy import SQLAlchemy

# Initialize SQLAlchemy
db = SQLAlchemy()
