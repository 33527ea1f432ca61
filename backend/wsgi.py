# Overview: WSGI entry point (FLASK_APP=wsgi.py).

from tankflow import create_app

app = create_app()
