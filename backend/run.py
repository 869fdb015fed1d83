"""Application entry point."""
import atexit
import os

import click
from dotenv import load_dotenv
from flask.cli import with_appcontext

from rollcall import create_app, db

# Load environment variables
load_dotenv()

# Create Flask app
app = create_app(os.getenv('FLASK_ENV', 'development'))
atexit.register(app.extensions['rollcall'].shutdown)


@app.cli.command()
@with_appcontext
def reset_db():
    """Drop and recreate the ledger tables."""
    if click.confirm('This will delete all attendance data. Continue?'):
        db.drop_all()
        db.create_all()
        click.echo('Database reset complete.')


@app.cli.command()
def list_sessions():
    """List sessions known to the ledger."""
    for session in app.extensions['rollcall'].sessions.list_sessions():
        click.echo(f'{session.session_id}  {session.class_id:<16} {session.status.value}')


if __name__ == '__main__':
    # Development server
    port = int(os.environ.get('PORT', 5000))
    host = os.environ.get('HOST', '127.0.0.1')
    debug = os.environ.get('FLASK_ENV') == 'development'

    # the reloader would start a second set of rotation timers
    app.run(host=host, port=port, debug=debug, use_reloader=False)
