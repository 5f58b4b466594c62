#!/usr/bin/env python3
"""
brochure-pipeline

A FastAPI application that converts uploaded brochures into cached slide decks
and serves per-user slide overlays to the viewer.

To start the server:
    python main.py
"""

# start the fastapi server when this file is run
if __name__ == "__main__":
    import uvicorn
    # run the api app on port 8000 with auto-reload for development
    uvicorn.run("brochure_pipeline.api:app", host="0.0.0.0", port=8000, reload=True)
