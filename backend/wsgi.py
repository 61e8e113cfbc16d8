# backend/wsgi.py
from trashdrop import create_app

app = create_app()
