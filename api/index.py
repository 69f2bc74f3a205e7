"""
Vercel serverless function wrapper for the Flask app
Vercel handles WSGI apps directly, so we only need to import and expose the app
"""
import os
import sys

# Add parent directory to path so the flat top-level modules import
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if parent_dir not in sys.path:
    sys.path.insert(0, parent_dir)

from app import app  # noqa: E402

# The @vercel/python builder wraps the exposed WSGI app
