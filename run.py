"""Local development entry point.

Usage:
    python run.py

Reads .env (SUPABASE_URL, STRIPE_SECRET_KEY, ...) before the app is built.
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before anything else

from shop2give import create_app

app = create_app()

if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=5001)
