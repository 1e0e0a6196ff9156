"""Development server entry point"""
import os

from clientguard.app import create_app

app = create_app(os.environ.get('FLASK_CONFIG', 'default'))

if __name__ == "__main__":
    app.run(debug=app.config.get('DEBUG', False), host='127.0.0.1', port=5000)
