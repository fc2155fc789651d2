# Overview: WSGI entry point; FLASK_APP=wsgi.py for the flask CLI.

from feedledger import create_app

app = create_app()
