"""Adept assistant server entry point."""

import os

import uvicorn
from dotenv import load_dotenv

load_dotenv()

if __name__ == "__main__":
    # 127.0.0.1 keeps the API local; set API_HOST=0.0.0.0 to expose it on the network
    host = os.getenv("API_HOST", "127.0.0.1")
    port = int(os.getenv("API_PORT", 8000))
    debug = os.getenv("DEBUG", "false").lower() == "true"

    print(f"Starting Adept assistant API on {host}:{port}")
    uvicorn.run("adept.main:app", host=host, port=port, reload=debug)
