import os

from mixroom import create_app, settings

if __name__ == "__main__":
    app = create_app()
    port = int(os.environ.get("PORT", "5000"))
    app.run(host="127.0.0.1", port=port, debug=settings.DEBUG, threaded=True)
