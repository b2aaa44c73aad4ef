"""
Entry point for Flask.

Usage (from project root):

    flask --app run.py --debug run

Database:

    flask --app run.py db upgrade      # Flask-Migrate
    flask --app run.py init-db         # development shortcut
    flask --app run.py seed-demo       # demo contractor + sample estimate
"""

from buildbooks import create_app

# WSGI application object; `flask run` and WSGI servers look for `app`.
app = create_app()

if __name__ == "__main__":
    # Direct `python run.py` is for local development only.
    app.run(debug=True)
