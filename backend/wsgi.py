# backend/wsgi.py
from shopbot import create_app
from shopbot.extensions import socketio

app = create_app()

if __name__ == "__main__":
    socketio.run(app, host="0.0.0.0", port=5000, debug=True)
