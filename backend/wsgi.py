# Overview: WSGI entry point; FLASK_APP=wsgi.py for the CLI, or serve `app` with any WSGI server.

from labdesk import create_app

app = create_app()
