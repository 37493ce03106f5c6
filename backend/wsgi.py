# backend/wsgi.py
from optica import create_app

app = create_app()
